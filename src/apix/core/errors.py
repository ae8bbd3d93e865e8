"""Domain exceptions for the aPix storage backend.

Every exception raised by the storage core derives from :class:`StorageError`
and carries the HTTP status the API layer should answer with.  The FastAPI
application registers a single handler for the base class (see
:mod:`apix.api.main`), so route handlers can let these propagate instead of
translating them one by one.

Unexpected ``OSError`` instances are not wrapped: they reach
the catch-all handler and become a 500 response.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base class for expected, client-facing storage failures."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidCategoryError(StorageError):
    """The category is not one of the known storage partitions."""


class InvalidSegmentError(StorageError):
    """A path segment is malformed or would escape its category root."""


class BadUploadError(StorageError):
    """An upload has the wrong type, is malformed, or is too large."""


class MissingApiKeyError(StorageError):
    """No API key is available for the generative AI client."""


class NotFoundError(StorageError):
    """The resolved path is valid but nothing exists there."""

    status_code = 404
