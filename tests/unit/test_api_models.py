"""Tests for apix.api.models - Pydantic request models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from apix.api.models import ApiKeyRequest, Base64UploadRequest, DeleteByUrlRequest


class TestBase64UploadRequest:
    def test_all_fields_optional(self):
        """An empty payload validates; the route reports what is missing."""
        req = Base64UploadRequest()
        assert req.base64 is None
        assert req.filename is None

    def test_values_kept(self):
        """Supplied values are kept as sent."""
        req = Base64UploadRequest(base64="data:image/png;base64,AA==", filename="a.png")
        assert req.filename == "a.png"


class TestDeleteByUrlRequest:
    def test_url_optional(self):
        """The url field defaults to None."""
        assert DeleteByUrlRequest().url is None

    def test_from_json(self):
        """The model parses a JSON body."""
        req = DeleteByUrlRequest.model_validate_json('{"url": "/gallery/a.png"}')
        assert req.url == "/gallery/a.png"

    def test_non_string_url_rejected(self):
        """A number is not coerced into a URL."""
        with pytest.raises(ValidationError):
            DeleteByUrlRequest.model_validate_json('{"url": 5}')


class TestApiKeyRequest:
    def test_key_optional(self):
        """A missing key validates; the route rejects it with 400."""
        assert ApiKeyRequest().api_key is None

    def test_key_kept_verbatim(self):
        """Whitespace is stripped by the client handle, not the model."""
        assert ApiKeyRequest(api_key=" k ").api_key == " k "
