"""Explicit handle around the ``google-genai`` client.

The front-end lets users paste their own API key.  Rather than mutating a
process-wide client whenever the key changes, the application keeps one
:class:`GenAIClientHandle` on ``app.state`` and passes it to whatever issues
generative requests.  The handle builds the SDK client lazily and throws it
away whenever the key changes, so the next access rebuilds it with the new
credentials.

Usage
-----
::

    handle = GenAIClientHandle(default_api_key=config.gemini_api_key)
    client = handle.client          # built on first access
    handle.update_api_key("AIza...")
    client = handle.client          # rebuilt with the new key
"""

from __future__ import annotations

import logging
from typing import Literal

from google import genai

from apix.core.errors import MissingApiKeyError

logger = logging.getLogger(__name__)

KeySource = Literal["override", "environment", "none"]


class GenAIClientHandle:
    """Lazily built, rebuild-on-change ``genai.Client``.

    Attributes:
        _default_api_key (str):
            Key from configuration, used when no override is set.
        _override_api_key (str | None):
            Key supplied at runtime through the settings API.
        _client (genai.Client | None):
            Cached client for the current key, or ``None`` until first use.
    """

    def __init__(self, default_api_key: str = "", model: str | None = None) -> None:
        self._default_api_key = (default_api_key or "").strip()
        self._override_api_key: str | None = None
        self._client: genai.Client | None = None
        self.model = model

    @property
    def api_key(self) -> str:
        """The key the next client will be built with (may be empty)."""
        return self._override_api_key or self._default_api_key

    @property
    def key_source(self) -> KeySource:
        if self._override_api_key:
            return "override"
        if self._default_api_key:
            return "environment"
        return "none"

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> genai.Client:
        """Return the client for the current key, building it if needed.

        Raises:
            MissingApiKeyError: If neither an override nor a default key is set.
        """
        if self._client is None:
            if not self.api_key:
                raise MissingApiKeyError("No API key configured")
            self._client = genai.Client(api_key=self.api_key)
            logger.info("Generative AI client built (key source: %s)", self.key_source)
        return self._client

    def update_api_key(self, api_key: str | None) -> None:
        """Replace the runtime key and drop the cached client.

        Passing ``None`` or a blank string falls back to the configured key.
        """
        cleaned = (api_key or "").strip()
        self._override_api_key = cleaned or None
        self._client = None

    def clear_api_key(self) -> None:
        """Forget the runtime key; the configured key applies again."""
        self.update_api_key(None)
