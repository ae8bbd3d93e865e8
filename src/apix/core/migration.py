"""One-time migration from the legacy ``uploads/`` tree to category roots.

Older releases stored everything under ``<root>/uploads/<category>/...``.
The current layout keeps each category directly under ``<root>``.  On
startup, :func:`migrate_legacy_storage` moves whatever is left in the legacy
tree into the new one:

- directories are recreated at the destination, merging with any directory
  that already exists there
- files are moved; a destination name that is already taken is replaced by
  the next free ``-1``, ``-2``, ... variant (see
  :func:`apix.core.allocator.candidate_paths`), so nothing is overwritten
- emptied legacy directories are removed bottom-up, then the legacy root
  itself if nothing unrecognised remains in it

A file is moved by hard-linking it onto its destination name and then
unlinking the source, so the name is claimed and filled in one step.  Across
filesystems the file is copied to a hidden ``.<name>.partial`` sibling and
renamed into place instead.

The routine is idempotent.  Without a legacy root it returns immediately, and
an interrupted run leaves only entries that a later run picks up again: a
destination that is a hard link to its still-present source, or an empty
file, is taken over rather than skipped.

Failure policy
--------------
By default a failing entry is logged, recorded in the returned
:class:`MigrationReport` and left in place; the new layout remains fully
usable and the next start retries the remainder.  With ``strict=True`` the
first ``OSError`` propagates and aborts application startup.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path

from apix.core.allocator import candidate_paths
from apix.core.layout import Category, StorageLayout
from apix.core.tree import walk_tree

logger = logging.getLogger(__name__)

# os.link failures that mean "no hard link possible here", not "cannot move".
_NO_HARDLINK_ERRNOS = frozenset(
    code
    for code in (
        errno.EXDEV,
        errno.EPERM,
        errno.EMLINK,
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
    )
    if code is not None
)


@dataclass
class MigrationReport:
    """Summary of one migration run.

    Attributes:
        performed: ``False`` when there was no legacy root to migrate.
        files_moved: Number of files relocated.
        files_renamed: Number of files that needed a disambiguated name.
        directories_merged: Number of legacy directories recreated or merged.
        errors: ``(path, message)`` for every entry that could not be moved.
        legacy_root_removed: Whether the legacy root was deleted at the end.
    """

    performed: bool = False
    files_moved: int = 0
    files_renamed: int = 0
    directories_merged: int = 0
    errors: list[tuple[Path, str]] = field(default_factory=list)
    legacy_root_removed: bool = False


def _is_leftover(src: Path, candidate: Path) -> bool:
    """Return ``True`` if *candidate* is debris of an interrupted move of *src*.

    That is either a hard link to *src* itself (crash between link and
    unlink) or an empty regular file (a name claimed but never filled).
    """
    try:
        if os.path.samefile(src, candidate):
            return True
        stats = candidate.lstat()
    except FileNotFoundError:
        return False
    return stat.S_ISREG(stats.st_mode) and stats.st_size == 0


def _move_across_devices(src: Path, dest: Path) -> Path:
    """Copy-then-rename move used when *src* cannot be hard-linked to *dest*."""
    partial = dest.with_name(f".{dest.name}.partial")
    shutil.copy2(src, partial, follow_symlinks=False)
    for candidate in candidate_paths(dest):
        if not candidate.exists() or _is_leftover(src, candidate):
            os.replace(partial, candidate)
            src.unlink()
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover


def _replace_or_copy(src: Path, candidate: Path, dest: Path) -> Path:
    try:
        os.replace(src, candidate)
    except OSError as exc:
        if exc.errno not in _NO_HARDLINK_ERRNOS:
            raise
        return _move_across_devices(src, dest)
    return candidate


def _move_file(src: Path, dest: Path) -> Path:
    """Move *src* to the first free (or leftover) name derived from *dest*.

    Each candidate is claimed with :func:`os.link`, which fails if the name is
    taken, so the destination only ever appears with its full content.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    for candidate in candidate_paths(dest):
        try:
            os.link(src, candidate, follow_symlinks=False)
        except FileExistsError:
            if not _is_leftover(src, candidate):
                continue
            if not os.path.samefile(src, candidate):
                return _replace_or_copy(src, candidate, dest)
        except OSError as exc:
            if exc.errno not in _NO_HARDLINK_ERRNOS:
                raise
            logger.debug("Hard link not possible for %s (%s), copying", src, exc)
            return _move_across_devices(src, dest)
        src.unlink()
        return candidate
    raise AssertionError("unreachable")  # pragma: no cover


def _remove_if_empty(directory: Path) -> bool:
    try:
        directory.rmdir()
    except OSError:
        return False
    return True


def _migrate_category(
    legacy_dir: Path,
    category_dir: Path,
    report: MigrationReport,
    *,
    strict: bool,
) -> None:
    category_dir.mkdir(parents=True, exist_ok=True)
    legacy_subdirs: list[Path] = []

    for entry in walk_tree(legacy_dir):
        dest = category_dir.joinpath(*entry.relative.parts)
        try:
            if entry.is_dir:
                dest.mkdir(parents=True, exist_ok=True)
                legacy_subdirs.append(entry.path)
                report.directories_merged += 1
                continue

            target = _move_file(entry.path, dest)
        except OSError as exc:
            if strict:
                raise
            logger.error("Could not migrate %s: %s", entry.path, exc)
            report.errors.append((entry.path, str(exc)))
            continue

        report.files_moved += 1
        if target != dest:
            report.files_renamed += 1
            logger.info("Migrated %s as %s (name collision)", entry.path, target)

    # Deepest directories first; anything that still has content stays.
    for directory in reversed(legacy_subdirs):
        _remove_if_empty(directory)
    _remove_if_empty(legacy_dir)


def migrate_legacy_storage(layout: StorageLayout, *, strict: bool = False) -> MigrationReport:
    """Move the legacy upload tree into the category-based layout.

    Args:
        layout: Storage layout describing both the legacy and the new roots.
        strict: Re-raise the first ``OSError`` instead of recording it.

    Returns:
        A :class:`MigrationReport` describing what happened.
    """
    report = MigrationReport()
    if not layout.legacy_root.exists():
        return report

    report.performed = True
    for category in Category:
        legacy_dir = layout.legacy_category_dirs[category]
        if not legacy_dir.is_dir():
            continue
        logger.info("Migrating legacy %s storage from %s", category.value, legacy_dir)
        _migrate_category(legacy_dir, layout.category_dirs[category], report, strict=strict)

    if layout.legacy_root.is_dir() and not any(layout.legacy_root.iterdir()):
        layout.legacy_root.rmdir()
        report.legacy_root_removed = True

    if report.errors:
        logger.warning(
            "Legacy migration left %d entries behind in %s; they will be retried on next start.",
            len(report.errors),
            layout.legacy_root,
        )
    else:
        logger.info(
            "Legacy uploads migrated to the new storage layout (%d files, %d renamed).",
            report.files_moved,
            report.files_renamed,
        )
    return report
