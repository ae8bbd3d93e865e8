"""Configuration management for the aPix storage backend.

All configuration is loaded with Pydantic Settings from environment variables
carrying the ``APIX_`` prefix, so deployments can be customised without code
changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:

1. Environment variables (``APIX_*`` prefix)
2. ``.env`` file in the working directory
3. Default values defined in :class:`ApixConfig`

Example ``.env`` file::

    APIX_STORAGE_ROOT=/srv/apix
    APIX_SERVER_PORT=3001
    APIX_PUBLIC_BASE_URL=http://192.168.1.20:3001
    APIX_GEMINI_API_KEY=...
    APIX_STRICT_MIGRATION=false

Global Configuration Instance
------------------------------
A global ``config`` instance is created at module import time and serves as
the single source of truth for the running server.  Tests build their own
instances pointing at temporary directories.

Directory Management
--------------------
Unlike older releases, constructing the configuration does *not* create any
directories.  The storage tree is created by
:func:`apix.core.layout.ensure_storage_layout` during application startup,
immediately before the legacy migration runs.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Origins of the development front-end that are always allowed.
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# Loopback and private LAN addresses serving the front-end on port 3000.
DEFAULT_CORS_ORIGIN_REGEX = (
    r"^http://("
    r"127\.\d+\.\d+\.\d+"
    r"|192\.168\.\d+\.\d+"
    r"|172\.16\.\d+\.\d+"
    r"|10\.\d+\.\d+\.\d+"
    r"):3000$"
)


class ApixConfig(BaseSettings):
    """Main configuration for the aPix storage backend.

    Attributes
    ----------
    Storage:
        storage_root : Path
            Directory holding the category roots and the data directory.
        legacy_dirname : str
            Name of the pre-migration upload root under ``storage_root``.
        data_dirname : str
            Name of the flat JSON document directory under ``storage_root``.
        strict_migration : bool
            Abort startup on the first migration error instead of logging
            it and continuing with the remaining entries.

    Server:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn (1-65535).
        public_base_url : str | None
            Prefix of every file URL handed out to clients.  Defaults to
            ``http://localhost:<server_port>``.
        log_level : str
            Root logging level used by the ``apix`` entry point.

    Uploads:
        max_upload_files : int
            Maximum number of files in one multipart upload.
        max_upload_bytes : int
            Maximum size of a single uploaded file.

    CORS:
        cors_origins : list[str]
            Origins that are always allowed.
        cors_origin_regex : str
            Additional origins allowed by pattern (private LAN addresses).
        dev_mode : bool
            Allow every origin.

    Generative AI:
        gemini_api_key : str
            Default API key for the ``google-genai`` client.  Can be
            overridden at runtime through ``/api/settings/api-key``.
        gemini_model : str
            Default model identifier handed to callers of the client handle.

    Examples
    --------
    Point the server at a throwaway directory:

        >>> cfg = ApixConfig(storage_root="/tmp/apix", server_port=3100)
        >>> cfg.base_url
        'http://localhost:3100'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="APIX_",
        case_sensitive=False,
    )

    # Storage
    storage_root: Path = Field(
        default=Path("storage"),
        description="Root directory for gallery, history and data storage",
    )
    legacy_dirname: str = Field(
        default="uploads",
        description="Name of the legacy upload root migrated on startup",
    )
    data_dirname: str = Field(
        default="data",
        description="Name of the JSON document directory",
    )
    strict_migration: bool = Field(
        default=False,
        description="Abort startup if the legacy migration fails",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3001,
        description="Server port",
        ge=1,
        le=65535,
    )
    public_base_url: str | None = Field(
        default=None,
        description="Base URL used when issuing file URLs",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level for the server process",
    )

    # Uploads
    max_upload_files: int = Field(default=10, ge=1)
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    cors_origin_regex: str = Field(default=DEFAULT_CORS_ORIGIN_REGEX)
    dev_mode: bool = Field(
        default=False,
        description="Allow requests from any origin",
    )

    # Generative AI
    gemini_api_key: str = Field(
        default="",
        description="Default API key for the generative AI client",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Default image model identifier",
    )

    @property
    def base_url(self) -> str:
        """Return the URL prefix for issued file URLs, without a trailing slash."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        return f"http://localhost:{self.server_port}"


# Global configuration instance, loaded from APIX_* environment variables and
# the .env file.
config = ApixConfig()
