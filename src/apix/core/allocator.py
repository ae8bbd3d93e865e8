"""Collision-free filename allocation.

Two flavours are provided:

- :func:`unique_path` only *checks* the filesystem and returns the first free
  candidate.  It is useful for previews and tests but is racy if the caller
  writes the file later.
- :func:`claim_unique_path` walks the same candidate sequence but claims each
  one by exclusive creation (``open(path, "xb")``).  The first creation that
  succeeds wins, so two concurrent writers can never end up with the same
  name.  Uploads go through this function.

The legacy migration walks :func:`candidate_paths` itself and claims each
name by hard-linking the existing file onto it, so no empty placeholder is
ever created for a file that already has content.

Candidates are ``<stem><ext>``, ``<stem>-1<ext>``, ``<stem>-2<ext>``, ... where
``<ext>`` is the last suffix of the name (``archive.tar.gz`` becomes
``archive.tar-1.gz``).
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".png"

# Upper bound of the random component in generated upload names.
_RANDOM_UPPER = 10**9


def candidate_paths(path: Path) -> Iterator[Path]:
    """Yield ``path`` followed by its ``-1``, ``-2``, ... variants, without end."""
    yield path
    stem, ext = path.stem, path.suffix
    counter = 1
    while True:
        yield path.with_name(f"{stem}-{counter}{ext}")
        counter += 1


def unique_path(path: str | Path) -> Path:
    """Return *path* if it does not exist, else the first free numbered variant."""
    for candidate in candidate_paths(Path(path)):
        if not candidate.exists():
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover


def claim_unique_path(path: str | Path) -> Path:
    """Atomically reserve a free name derived from *path*.

    The returned path exists as an empty file owned by the caller, who is
    expected to overwrite it (write its content, or ``os.replace`` a file onto
    it).  The parent directory must already exist.

    Args:
        path: Desired destination.

    Returns:
        The path that was claimed.
    """
    for candidate in candidate_paths(Path(path)):
        try:
            with open(candidate, "xb"):
                pass
        except FileExistsError:
            continue
        if candidate.name != Path(path).name:
            logger.debug("Name %s taken, claimed %s", Path(path).name, candidate.name)
        return candidate
    raise AssertionError("unreachable")  # pragma: no cover


def build_upload_filename(
    original_name: str | None,
    *,
    now_ms: int | None = None,
    rand: int | None = None,
) -> str:
    """Generate a fresh upload filename ``img-<epoch-ms>-<random><ext>``.

    The extension is taken from *original_name*, falling back to ``.png``.
    Uniqueness is not guaranteed by the name alone; callers still claim the
    result with :func:`claim_unique_path`.
    """
    ext = Path(original_name or "").suffix or DEFAULT_EXTENSION
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if rand is None:
        rand = random.randint(0, _RANDOM_UPPER)
    return f"img-{now_ms}-{rand}{ext}"
