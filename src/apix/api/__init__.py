"""aPix storage backend - FastAPI REST API layer.

This package contains the FastAPI application, the Pydantic request models,
and the filesystem helpers behind the image and data endpoints.

Modules
-------
main
    FastAPI application factory, all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
image_store
    Upload writing, recursive listing and deletion of image files.
data_store
    Flat JSON document storage.
"""
