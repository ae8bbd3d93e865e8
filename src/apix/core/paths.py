"""Storage path resolution for untrusted request input.

Every path the API reads, writes or deletes is produced by this module.  The
functions here are purely computational: they never touch the filesystem,
which keeps the sandbox rules easy to test in isolation.

Rules
-----
- A **subfolder** segment may contain only ``A-Z a-z 0-9 _ -``.
- A **filename** (the final segment) may additionally contain ``.``.
- No segment may be ``.``, ``..`` or contain ``..``.
- Empty segments are treated as absent; at least one segment must remain.
- After joining and normalising, the result must be the category root itself
  or lie below ``root + os.sep``.  A plain string-prefix test would accept
  sibling directories such as ``gallery2`` for ``gallery``, so the separator
  is part of the comparison.

Free-form subfolder input (query parameters) goes through
:func:`sanitize_subfolder` first, which strips rather than rejects.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

from apix.core.errors import InvalidCategoryError, InvalidSegmentError
from apix.core.layout import Category, StorageLayout

_SUBFOLDER_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_FILENAME_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_SUBFOLDER_STRIP_RE = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class ResolvedPath:
    """A validated location inside a category root.

    Attributes:
        category: The category the path was resolved against.
        path: Absolute, normalised path of the target.
        category_dir: Absolute root of ``category``; callers may use it to
            re-check containment independently.
    """

    category: Category
    path: Path
    category_dir: Path


def sanitize_subfolder(value: object) -> str:
    """Strip every disallowed character from a free-form subfolder value.

    Args:
        value: Raw input, typically a query parameter.  ``None`` is allowed.

    Returns:
        The cleaned subfolder name, or ``""`` meaning "no subfolder".
    """
    if not value:
        return ""
    return _SUBFOLDER_STRIP_RE.sub("", str(value))


def is_valid_path_segment(value: object, *, final: bool = True) -> bool:
    """Return ``True`` if *value* is an acceptable path segment.

    Args:
        value: Candidate segment.
        final: ``True`` for the filename segment (dots allowed), ``False``
            for subfolder segments.
    """
    if not isinstance(value, str) or not value:
        return False
    if value == "." or ".." in value:
        return False
    pattern = _FILENAME_SEGMENT_RE if final else _SUBFOLDER_SEGMENT_RE
    return pattern.fullmatch(value) is not None


def is_within_directory(path: str | Path, directory: str | Path) -> bool:
    """Boundary-safe containment test on normalised absolute paths."""
    path_str = os.fspath(path)
    directory_str = os.fspath(directory).rstrip(os.sep) or os.sep
    if path_str == directory_str:
        return True
    prefix = directory_str if directory_str.endswith(os.sep) else directory_str + os.sep
    return path_str.startswith(prefix)


def parse_category(value: object) -> Category:
    """Map a raw category string onto :class:`Category`.

    Raises:
        InvalidCategoryError: For anything outside the closed set.
    """
    if isinstance(value, Category):
        return value
    if isinstance(value, str):
        try:
            return Category(value)
        except ValueError:
            pass
    raise InvalidCategoryError("Invalid category")


def get_category_directory(layout: StorageLayout, category: object) -> Path:
    """Return the absolute root directory of *category*.

    Raises:
        InvalidCategoryError: If *category* is unknown.
    """
    return layout.category_dirs[parse_category(category)]


def build_safe_file_path(category_dir: Path, segments: Iterable[str | None]) -> Path:
    """Join *segments* below *category_dir* and enforce the sandbox rules.

    Args:
        category_dir: Absolute, normalised category root.
        segments: Subfolder segments followed by the filename.  ``None`` and
            empty strings are skipped.

    Returns:
        The absolute path of the target.

    Raises:
        InvalidSegmentError: If no segment remains, a segment is malformed, or
            the joined path leaves ``category_dir``.
    """
    safe_segments = [segment for segment in segments if segment]
    if not safe_segments:
        raise InvalidSegmentError("Invalid path: no filename given")

    last = len(safe_segments) - 1
    for index, segment in enumerate(safe_segments):
        if not is_valid_path_segment(segment, final=index == last):
            raise InvalidSegmentError(f"Invalid path segment: {segment!r}")

    resolved = os.path.abspath(os.path.join(os.fspath(category_dir), *safe_segments))
    if not is_within_directory(resolved, category_dir):
        raise InvalidSegmentError("Invalid path: outside of storage root")

    return Path(resolved)


def resolve_stored_path(
    layout: StorageLayout,
    category: object,
    segments: Iterable[str | None],
) -> ResolvedPath:
    """Validate a category and segment list and resolve them to a path."""
    parsed = parse_category(category)
    category_dir = layout.category_dirs[parsed]
    return ResolvedPath(
        category=parsed,
        path=build_safe_file_path(category_dir, segments),
        category_dir=category_dir,
    )


def parse_file_url(layout: StorageLayout, url: object) -> ResolvedPath:
    """Resolve a URL issued by this server (or a bare path) to a file path.

    Both ``http://host:3001/gallery/upload/img.png`` and
    ``/gallery/upload/img.png`` (with or without the leading slash) are
    accepted.  The first path segment selects the category.

    Raises:
        InvalidSegmentError: For empty input or fewer than two segments, or
            when the remaining segments fail validation.
        InvalidCategoryError: If the first segment is not a category.
    """
    if not url or not isinstance(url, str):
        raise InvalidSegmentError("Invalid URL")

    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        pathname = parts.path
    else:
        pathname = url if url.startswith("/") else f"/{url}"

    segments = [segment for segment in pathname.split("/") if segment]
    if len(segments) < 2:
        raise InvalidSegmentError("Invalid URL: expected /<category>/<filename>")

    category, *rest = segments
    return resolve_stored_path(layout, category, rest)


def build_file_url(base_url: str, category: Category | str, subfolder: str, filename: str) -> str:
    """Build the public URL of a stored file.

    The URL embeds the category, optional subfolder and filename literally, so
    :func:`parse_file_url` can always invert it.
    """
    category_value = category.value if isinstance(category, Category) else category
    parts = [base_url.rstrip("/"), category_value]
    if subfolder:
        parts.append(subfolder.strip("/"))
    parts.append(filename)
    return "/".join(parts)
