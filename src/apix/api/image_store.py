"""Image file storage helpers for the aPix API.

This module isolates the filesystem side of the image endpoints from
``apix.api.main`` so route handlers can focus on HTTP concerns while the
storage rules stay testable as small units.

The store is intentionally simple:

- there is no metadata database; every listing re-reads the category tree
- uploaded files keep whatever bytes the client sent
- listing order is reverse-chronological by modification time (newest first)

All paths handed to these helpers must already come from the resolver in
:mod:`apix.core.paths`.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Protocol

from apix.core.allocator import build_upload_filename, claim_unique_path
from apix.core.errors import BadUploadError, InvalidSegmentError, NotFoundError
from apix.core.layout import Category, StorageLayout
from apix.core.paths import (
    build_file_url,
    get_category_directory,
    is_valid_path_segment,
    parse_category,
)
from apix.core.tree import walk_tree

logger = logging.getLogger(__name__)

# Files shown by the listing endpoint.
IMAGE_FILE_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)

# Matched against both the extension and the MIME type of an upload.
ALLOWED_IMAGE_TYPES_RE = re.compile(r"jpeg|jpg|png|gif|webp")

DATA_URL_RE = re.compile(r"^data:image/(\w+);base64,(.+)$", re.DOTALL)

UPLOAD_CHUNK_SIZE = 1024 * 1024


class AsyncReadable(Protocol):
    """Anything with an awaitable ``read(size)``, e.g. ``fastapi.UploadFile``."""

    async def read(self, size: int = -1) -> bytes: ...


def is_allowed_image(filename: str | None, content_type: str | None) -> bool:
    """Return ``True`` if both the extension and the MIME type look like an image.

    Args:
        filename: Client-supplied file name.
        content_type: Client-supplied MIME type.
    """
    if not IMAGE_FILE_RE.search(Path(filename or "").suffix):
        return False
    return bool(content_type) and ALLOWED_IMAGE_TYPES_RE.search(content_type) is not None


def upload_directory(layout: StorageLayout, category: Category | str, subfolder: str) -> Path:
    """Return (and create) the directory uploads for *category* are written to.

    Args:
        layout: Storage layout.
        category: Target category.
        subfolder: Already sanitised subfolder, or ``""`` for the category root.

    Raises:
        InvalidCategoryError: If *category* is unknown.
        InvalidSegmentError: If *subfolder* is not a valid subfolder name.
    """
    directory = get_category_directory(layout, category)
    if subfolder:
        if not is_valid_path_segment(subfolder, final=False):
            raise InvalidSegmentError("Invalid subfolder")
        directory = directory / subfolder
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _claim_target(directory: Path, filename: str) -> Path:
    if not is_valid_path_segment(filename):
        raise InvalidSegmentError("Invalid filename")
    return claim_unique_path(directory / filename)


def save_image_bytes(directory: Path, filename: str, data: bytes) -> Path:
    """Write *data* under a free name derived from *filename*.

    Returns:
        The path that was written; its name may carry a ``-N`` suffix if
        *filename* was already taken.
    """
    target = _claim_target(directory, filename)
    try:
        target.write_bytes(data)
    except OSError:
        target.unlink(missing_ok=True)
        raise
    return target


async def save_upload_stream(
    directory: Path,
    upload: AsyncReadable,
    original_name: str | None,
    max_bytes: int,
) -> Path:
    """Stream a multipart upload to disk under a freshly generated name.

    Args:
        directory: Destination directory (from :func:`upload_directory`).
        upload: Upload object to read from.
        original_name: Client file name; only its extension is kept.
        max_bytes: Size limit for this file.

    Raises:
        BadUploadError: If the file exceeds *max_bytes* or the generated
            name is unusable.  Nothing is left on disk in that case.
    """
    filename = build_upload_filename(original_name)
    if not is_valid_path_segment(filename):
        raise BadUploadError("Invalid file extension")

    target = claim_unique_path(directory / filename)
    written = 0
    try:
        with open(target, "wb") as handle:
            while chunk := await upload.read(UPLOAD_CHUNK_SIZE):
                written += len(chunk)
                if written > max_bytes:
                    raise BadUploadError(f"File too large (limit {max_bytes} bytes)")
                handle.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise

    logger.debug("Stored upload %s (%d bytes)", target, written)
    return target


def require_image_filename(filename: str) -> str:
    """Return *filename* if it carries an image extension.

    Raises:
        BadUploadError: Otherwise.
    """
    if not IMAGE_FILE_RE.search(filename):
        raise BadUploadError("Only image files are allowed!")
    return filename


def decode_data_url(value: str) -> tuple[str, bytes]:
    """Split a ``data:image/<ext>;base64,<payload>`` URL into extension and bytes.

    Raises:
        BadUploadError: If the value is not an image data URL, names a
            non-image subtype, or the payload is not valid base64.
    """
    match = DATA_URL_RE.match(value.strip())
    if not match:
        raise BadUploadError("Invalid base64 format")

    extension, payload = match.groups()
    extension = extension.lower()
    if not ALLOWED_IMAGE_TYPES_RE.fullmatch(extension):
        raise BadUploadError("Only image files are allowed!")

    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BadUploadError("Invalid base64 format") from exc
    return extension, data


def _is_addressable(parts: tuple[str, ...]) -> bool:
    last = len(parts) - 1
    return all(is_valid_path_segment(part, final=index == last) for index, part in enumerate(parts))


def list_images(layout: StorageLayout, category: Category | str, base_url: str) -> list[dict]:
    """Recursively list the images stored in a category, newest first.

    Files whose relative path would not pass the resolver (for example a
    name containing spaces, left behind by the legacy migration) are not
    listed, so every returned URL can be fetched and deleted.

    Returns:
        One dictionary per image with ``filename``, ``url``, ``path``,
        ``subfolder`` (``""`` at the category root) and ``mtime`` (epoch
        milliseconds).
    """
    parsed = parse_category(category)
    category_dir = layout.category_dirs[parsed]

    images: list[dict] = []
    for entry in walk_tree(category_dir):
        if entry.is_dir or not IMAGE_FILE_RE.search(entry.path.name):
            continue
        if not _is_addressable(entry.relative.parts):
            # No URL could resolve back to it; skip rather than issue one.
            continue
        try:
            stats = entry.path.stat()
        except FileNotFoundError:
            # Deleted between listing and stat.
            continue

        subfolder = entry.relative.parent.as_posix()
        if subfolder == ".":
            subfolder = ""

        images.append(
            {
                "filename": entry.path.name,
                "url": build_file_url(base_url, parsed, subfolder, entry.path.name),
                "path": str(entry.path),
                "subfolder": subfolder,
                "mtime": int(stats.st_mtime * 1000),
            }
        )

    images.sort(key=lambda image: image["mtime"], reverse=True)
    return images


def require_file(path: Path, message: str = "Image not found") -> Path:
    """Return *path* if it is an existing regular file.

    Raises:
        NotFoundError: Otherwise.
    """
    if not path.is_file():
        raise NotFoundError(message)
    return path


def delete_file(path: Path) -> None:
    """Delete the file at *path*.

    Raises:
        NotFoundError: If there is no file at *path*.
    """
    require_file(path)
    path.unlink()
    logger.info("Deleted %s", path)
