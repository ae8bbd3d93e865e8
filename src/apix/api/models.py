"""Pydantic request models for the aPix API.

FastAPI uses these for request validation and the OpenAPI schema.

Models
------
Base64UploadRequest
    Payload for ``POST /api/upload-base64/{category}``.
DeleteByUrlRequest
    Payload for ``POST /api/delete-by-url``.
ApiKeyRequest
    Payload for ``POST /api/settings/api-key``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class Base64UploadRequest(BaseModel):
    """Request body for uploading one data-URL encoded image.

    Attributes:
        base64: Image as ``data:image/<ext>;base64,<payload>``.
        filename: Optional name to store the image under.  When omitted a
            name of the form ``img-<timestamp>-<random>.<ext>`` is generated.
    """

    base64: str | None = Field(
        default=None,
        description="Data URL of the image (data:image/<ext>;base64,...).",
    )
    filename: str | None = Field(
        default=None,
        description="Optional target filename; must be a plain file name.",
    )


class DeleteByUrlRequest(BaseModel):
    """Request body for deleting a file by a URL this server issued."""

    url: str | None = Field(
        default=None,
        description="File URL as returned by an upload or listing endpoint.",
    )


class ApiKeyRequest(BaseModel):
    """Request body for replacing the generative AI API key at runtime.

    The key is optional at the schema level so a missing key gets the same
    400 response as a blank one.
    """

    api_key: str | None = Field(
        default=None,
        description="API key for the generative AI client.",
    )
