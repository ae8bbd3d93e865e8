"""aPix storage backend - FastAPI application.

This module defines the application factory :func:`create_app`, the
module-level ``app`` served by uvicorn, every REST route, and the ``main()``
CLI function that launches the server.

Architecture
------------
The application is stateless apart from the filesystem:

- **Configuration** comes from :data:`apix.core.config.config`
  (``APIX_*`` environment variables).
- **Path safety** is delegated to :mod:`apix.core.paths`; no route joins
  request input onto a directory by itself.
- **Startup** (the lifespan context) creates the storage tree and migrates the
  legacy ``uploads/`` layout before the first request is served.
- **Static files** are mounted at ``/gallery``, ``/history`` and ``/data`` so
  the URLs returned by the upload endpoints can be fetched directly.
- **Errors** raised by the storage core carry their own status code and are
  translated into ``{"detail": ...}`` responses by one exception handler.
  Malformed request bodies and parameters are answered with 400 as well.

Endpoints
---------
========  =============================================  ==============================
Method    Path                                           Purpose
========  =============================================  ==============================
GET       ``/api/health``                                Liveness check
POST      ``/api/upload/{category}``                     Multipart image upload
POST      ``/api/upload-base64/{category}``              Data-URL image upload
GET       ``/api/images/{category}``                     Recursive listing, newest first
GET       ``/api/images/{category}/{filename}``          Fetch one image
GET       ``/api/images/{category}/{subfolder}/{name}``  Fetch one image from a subfolder
DELETE    ``/api/images/{category}/{filename}``          Delete one image
POST      ``/api/delete-by-url``                         Delete by issued URL
POST      ``/api/data/{filename}``                       Save a JSON document
GET       ``/api/data/{filename}``                       Load a JSON document
DELETE    ``/api/data/{filename}``                       Delete a JSON document
GET       ``/api/settings/api-key``                      API key status
POST      ``/api/settings/api-key``                      Replace the API key
DELETE    ``/api/settings/api-key``                      Revert to the configured key
========  =============================================  ==============================

Usage
-----
CLI (installed entry point)::

    apix

Direct invocation::

    python -m apix.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from apix import __version__
from apix.api import data_store, image_store
from apix.api.models import ApiKeyRequest, Base64UploadRequest, DeleteByUrlRequest
from apix.core.allocator import build_upload_filename
from apix.core.config import ApixConfig, config
from apix.core.errors import BadUploadError, InvalidSegmentError, StorageError
from apix.core.genai_client import GenAIClientHandle
from apix.core.layout import StorageLayout, ensure_storage_layout
from apix.core.migration import migrate_legacy_storage
from apix.core.paths import (
    build_file_url,
    parse_category,
    parse_file_url,
    resolve_stored_path,
    sanitize_subfolder,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle - storage bootstrap and legacy migration.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Prepare the storage tree before the application accepts requests.

    On startup:
        Creates the category roots, their well-known subfolders and the data
        directory, then migrates the legacy ``uploads/`` tree.  With
        ``APIX_STRICT_MIGRATION`` enabled a migration error aborts startup;
        otherwise it is logged and the server starts in degraded mode with
        the unmigrated files left in place.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    cfg: ApixConfig = app.state.config
    layout: StorageLayout = app.state.layout

    ensure_storage_layout(layout)
    app.state.migration_report = migrate_legacy_storage(layout, strict=cfg.strict_migration)

    for category, directory in layout.category_dirs.items():
        logger.info("%s directory: %s", category.value.capitalize(), directory)
    logger.info("Data directory: %s", layout.data_dir)

    yield


# ---------------------------------------------------------------------------
# Request-scoped accessors.
# ---------------------------------------------------------------------------


def _layout(request: Request) -> StorageLayout:
    return request.app.state.layout


def _config(request: Request) -> ApixConfig:
    return request.app.state.config


def _genai(request: Request) -> GenAIClientHandle:
    return request.app.state.genai


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/api/health")
async def health() -> dict:
    """Liveness check."""
    return {
        "status": "ok",
        "message": "aPix backend server is running",
        "version": __version__,
    }


@router.post("/api/upload/{category}")
async def upload_images(
    request: Request,
    category: str,
    subfolder: str | None = None,
    images: list[UploadFile] | None = File(default=None),
) -> dict:
    """Store one or more uploaded images.

    Files are accepted from the multipart field ``images``.  Every file must
    have an image extension *and* an image MIME type; the whole request is
    rejected otherwise.  Stored files are named
    ``img-<timestamp>-<random><ext>``.

    Args:
        request: Incoming request (used to reach the app state).
        category: Target category (``gallery`` or ``history``).
        subfolder: Optional subfolder; disallowed characters are stripped.
        images: Uploaded files.

    Returns:
        Dictionary with ``success``, ``urls`` and ``count``.

    Raises:
        InvalidCategoryError: 400 for an unknown category.
        BadUploadError: 400 for missing, too many, non-image, or oversized
            files.
    """
    cfg = _config(request)
    layout = _layout(request)
    parsed = parse_category(category)

    if not images:
        raise BadUploadError("No files uploaded")
    if len(images) > cfg.max_upload_files:
        raise BadUploadError(f"Too many files (limit {cfg.max_upload_files})")
    for upload in images:
        if not image_store.is_allowed_image(upload.filename, upload.content_type):
            raise BadUploadError("Only image files are allowed!")

    safe_subfolder = sanitize_subfolder(subfolder)
    directory = image_store.upload_directory(layout, parsed, safe_subfolder)

    stored: list[Path] = []
    try:
        for upload in images:
            stored.append(
                await image_store.save_upload_stream(
                    directory,
                    upload,
                    upload.filename,
                    cfg.max_upload_bytes,
                )
            )
    except Exception:
        # Keep the request all-or-nothing.
        for path in stored:
            path.unlink(missing_ok=True)
        raise

    urls = [build_file_url(cfg.base_url, parsed, safe_subfolder, path.name) for path in stored]
    logger.info("Stored %d upload(s) in %s", len(urls), directory)
    return {"success": True, "urls": urls, "count": len(urls)}


@router.post("/api/upload-base64/{category}")
async def upload_base64(
    request: Request,
    category: str,
    body: Base64UploadRequest | None = None,
    subfolder: str | None = None,
) -> dict:
    """Store one image sent as a data URL.

    Args:
        request: Incoming request.
        category: Target category.
        body: Validated :class:`Base64UploadRequest` payload.
        subfolder: Optional subfolder; disallowed characters are stripped.

    Returns:
        Dictionary with ``success``, ``url`` and ``filename``.  The filename
        differs from the requested one if that name was already taken.

    Raises:
        InvalidCategoryError: 400 for an unknown category.
        BadUploadError: 400 for missing or malformed data, or a non-image
            subtype or filename extension.
        InvalidSegmentError: 400 for a requested filename that is not a plain
            file name.
    """
    cfg = _config(request)
    layout = _layout(request)
    parsed = parse_category(category)

    if body is None or not body.base64:
        raise BadUploadError("No base64 data provided")

    extension, data = image_store.decode_data_url(body.base64)
    if body.filename:
        filename = image_store.require_image_filename(body.filename)
    else:
        filename = build_upload_filename(f"image.{extension}")

    safe_subfolder = sanitize_subfolder(subfolder)
    directory = image_store.upload_directory(layout, parsed, safe_subfolder)
    path = image_store.save_image_bytes(directory, filename, data)

    return {
        "success": True,
        "url": build_file_url(cfg.base_url, parsed, safe_subfolder, path.name),
        "filename": path.name,
    }


@router.get("/api/images/{category}")
async def list_images(request: Request, category: str) -> dict:
    """List every image in a category, including subfolders, newest first.

    Returns:
        Dictionary with ``images`` and ``count``.
    """
    images = image_store.list_images(_layout(request), category, _config(request).base_url)
    return {"images": images, "count": len(images)}


@router.get("/api/images/{category}/{filename}")
async def get_image(request: Request, category: str, filename: str) -> FileResponse:
    """Return one image stored at the category root.

    Raises:
        InvalidCategoryError: 400 for an unknown category.
        InvalidSegmentError: 400 for a malformed filename.
        NotFoundError: 404 if the file does not exist.
    """
    resolved = resolve_stored_path(_layout(request), category, [filename])
    return FileResponse(image_store.require_file(resolved.path))


@router.get("/api/images/{category}/{subfolder}/{filename}")
async def get_image_in_subfolder(
    request: Request,
    category: str,
    subfolder: str,
    filename: str,
) -> FileResponse:
    """Return one image stored in a subfolder of a category.

    Raises:
        InvalidCategoryError: 400 for an unknown category.
        InvalidSegmentError: 400 if nothing of the subfolder survives
            sanitising, or the filename is malformed.
        NotFoundError: 404 if the file does not exist.
    """
    layout = _layout(request)
    parse_category(category)

    safe_subfolder = sanitize_subfolder(subfolder)
    if not safe_subfolder:
        raise InvalidSegmentError("Invalid subfolder")

    resolved = resolve_stored_path(layout, category, [safe_subfolder, filename])
    return FileResponse(image_store.require_file(resolved.path))


@router.delete("/api/images/{category}/{filename}")
async def delete_image(request: Request, category: str, filename: str) -> dict:
    """Delete one image stored at the category root.

    Raises:
        InvalidCategoryError: 400 for an unknown category.
        InvalidSegmentError: 400 for a malformed filename.
        NotFoundError: 404 if the file does not exist.
    """
    resolved = resolve_stored_path(_layout(request), category, [filename])
    image_store.delete_file(resolved.path)
    return {"success": True, "message": "Image deleted successfully"}


@router.post("/api/delete-by-url")
async def delete_by_url(request: Request, body: DeleteByUrlRequest | None = None) -> dict:
    """Delete the file behind a URL previously issued by this server.

    Raises:
        HTTPException: 400 if no URL is given or it cannot be resolved
            inside the storage sandbox.
        NotFoundError: 404 if the file does not exist.
    """
    if body is None or not body.url:
        raise HTTPException(status_code=400, detail="No URL provided")

    try:
        resolved = parse_file_url(_layout(request), body.url)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail="Invalid URL format") from exc

    image_store.delete_file(resolved.path)
    return {"success": True, "message": "Image deleted successfully"}


# --- JSON documents --------------------------------------------------------


@router.post("/api/data/{filename}")
async def save_data(request: Request, filename: str, data: Any = Body(default=None)) -> dict:
    """Save a JSON document, replacing any previous version.

    Raises:
        HTTPException: 400 if the body is empty.
        InvalidSegmentError: 400 if the filename is unusable.
    """
    if data is None:
        raise HTTPException(status_code=400, detail="No data provided")
    data_store.save_document(_layout(request).data_dir, filename, data)
    return {"success": True, "message": "Data saved successfully"}


@router.get("/api/data/{filename}")
async def load_data(request: Request, filename: str) -> Any:
    """Return a previously saved JSON document.

    Raises:
        NotFoundError: 404 if the document does not exist.
    """
    return data_store.load_document(_layout(request).data_dir, filename)


@router.delete("/api/data/{filename}")
async def delete_data(request: Request, filename: str) -> dict:
    """Delete a JSON document.

    Raises:
        NotFoundError: 404 if the document does not exist.
    """
    data_store.delete_document(_layout(request).data_dir, filename)
    return {"success": True, "message": "Data deleted successfully"}


# --- Generative AI settings ------------------------------------------------


@router.get("/api/settings/api-key")
async def get_api_key_status(request: Request) -> dict:
    """Report whether an API key is available and where it comes from."""
    handle = _genai(request)
    return {"has_key": handle.has_key, "source": handle.key_source}


@router.post("/api/settings/api-key")
async def set_api_key(request: Request, body: ApiKeyRequest | None = None) -> dict:
    """Replace the API key used by the generative AI client.

    Raises:
        HTTPException: 400 if the key is blank.
    """
    if body is None or not (body.api_key or "").strip():
        raise HTTPException(status_code=400, detail="API key is required")
    handle = _genai(request)
    handle.update_api_key(body.api_key)
    logger.info("Generative AI API key replaced at runtime")
    return {"success": True, "has_key": handle.has_key, "source": handle.key_source}


@router.delete("/api/settings/api-key")
async def clear_api_key(request: Request) -> dict:
    """Forget the runtime API key and fall back to the configured one."""
    handle = _genai(request)
    handle.clear_api_key()
    return {"success": True, "has_key": handle.has_key, "source": handle.key_source}


# ---------------------------------------------------------------------------
# Error handlers.
# ---------------------------------------------------------------------------


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests as 400 with a single message."""
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid request: {location}: {message}" if location else message},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc) or "Internal server error"},
    )


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(cfg: ApixConfig | None = None) -> FastAPI:
    """Build a FastAPI application bound to *cfg*.

    Nothing is created on disk here; the storage tree is prepared by
    :func:`lifespan` when the application starts.

    Args:
        cfg: Configuration to use.  Defaults to the global ``config``.

    Returns:
        The configured application.
    """
    cfg = cfg or config
    layout = StorageLayout.from_config(cfg)

    app = FastAPI(
        title="aPix Storage Backend",
        description="Image and JSON document storage for the aPix client.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.layout = layout
    app.state.genai = GenAIClientHandle(cfg.gemini_api_key, model=cfg.gemini_model)
    app.state.migration_report = None

    # Private LAN front-ends are allowed by pattern; dev mode opens CORS to
    # every origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_origin_regex=".*" if cfg.dev_mode else cfg.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StorageError, _storage_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)

    # Directories may not exist yet; the lifespan creates them before the
    # first request.
    for category, directory in layout.category_dirs.items():
        app.mount(
            f"/{category.value}",
            StaticFiles(directory=str(directory), check_dir=False),
            name=category.value,
        )
    app.mount("/data", StaticFiles(directory=str(layout.data_dir), check_dir=False), name="data")

    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~apix.core.config.config`
    (``APIX_SERVER_HOST``, ``APIX_SERVER_PORT``, ``APIX_LOG_LEVEL``).
    Defaults to ``0.0.0.0:3001``.

    This function is registered as the ``apix`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("aPix backend starting on %s:%d", config.server_host, config.server_port)

    uvicorn.run(
        "apix.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
