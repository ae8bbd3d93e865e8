"""Core storage functionality for the aPix backend.

- **config.py**: Pydantic Settings configuration (``APIX_`` prefix)
- **layout.py**: Categories, storage layout and directory bootstrap
- **paths.py**: Resolver guarding the storage sandbox
- **allocator.py**: Collision-free filename allocation
- **tree.py**: Directory traversal shared by listing and migration
- **migration.py**: Legacy ``uploads/`` migration
- **genai_client.py**: Rebuild-on-demand generative AI client handle
- **errors.py**: Domain exceptions mapped to HTTP status codes
"""

from apix.core.allocator import build_upload_filename, claim_unique_path, unique_path
from apix.core.config import ApixConfig, config
from apix.core.errors import (
    BadUploadError,
    InvalidCategoryError,
    InvalidSegmentError,
    MissingApiKeyError,
    NotFoundError,
    StorageError,
)
from apix.core.layout import Category, StorageLayout, ensure_storage_layout
from apix.core.migration import MigrationReport, migrate_legacy_storage
from apix.core.paths import (
    ResolvedPath,
    build_file_url,
    build_safe_file_path,
    parse_file_url,
    resolve_stored_path,
    sanitize_subfolder,
)

__all__ = [
    "ApixConfig",
    "BadUploadError",
    "Category",
    "InvalidCategoryError",
    "InvalidSegmentError",
    "MigrationReport",
    "MissingApiKeyError",
    "NotFoundError",
    "ResolvedPath",
    "StorageError",
    "StorageLayout",
    "build_file_url",
    "build_safe_file_path",
    "build_upload_filename",
    "claim_unique_path",
    "config",
    "ensure_storage_layout",
    "migrate_legacy_storage",
    "parse_file_url",
    "resolve_stored_path",
    "sanitize_subfolder",
    "unique_path",
]
