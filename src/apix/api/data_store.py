"""Flat JSON document storage for the aPix API.

The front-end persists small JSON blobs (history, settings snapshots) under
names such as ``history.json``.  Documents live directly in the data
directory, with no subfolders, and every save replaces the whole file.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from apix.core.errors import InvalidSegmentError, NotFoundError
from apix.core.paths import build_safe_file_path

logger = logging.getLogger(__name__)

_DATA_FILENAME_STRIP_RE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_data_filename(filename: str) -> str:
    """Strip disallowed characters from a document name.

    Raises:
        InvalidSegmentError: If nothing usable survives (empty, ``.``, or a
            name containing ``..``).
    """
    cleaned = _DATA_FILENAME_STRIP_RE.sub("", filename or "")
    if not cleaned or cleaned == "." or ".." in cleaned:
        raise InvalidSegmentError("Invalid filename")
    return cleaned


def document_path(data_dir: Path, filename: str) -> Path:
    """Resolve a document name to its path inside *data_dir*."""
    return build_safe_file_path(data_dir, [sanitize_data_filename(filename)])


def save_document(data_dir: Path, filename: str, data: Any) -> Path:
    """Serialise *data* to ``<data_dir>/<filename>``, replacing any previous version.

    The file is written with 2-space indentation for readability.
    """
    path = document_path(data_dir, filename)
    data_dir.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2, ensure_ascii=False)
    return path


def load_document(data_dir: Path, filename: str) -> Any:
    """Load a previously saved document.

    Raises:
        NotFoundError: If the document does not exist.
    """
    path = document_path(data_dir, filename)
    if not path.is_file():
        raise NotFoundError("Data file not found")
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


def delete_document(data_dir: Path, filename: str) -> None:
    """Remove a document.

    Raises:
        NotFoundError: If the document does not exist.
    """
    path = document_path(data_dir, filename)
    if not path.is_file():
        raise NotFoundError("Data file not found")
    path.unlink()
    logger.info("Deleted data document %s", path.name)
