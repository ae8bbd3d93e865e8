"""Explicit-stack directory traversal shared by listing and migration."""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath


@dataclass(frozen=True)
class TreeEntry:
    """One node found by :func:`walk_tree`.

    Attributes:
        path: Absolute path of the node.
        relative: Path relative to the walk root, always with ``/``
            separators so it can be embedded in URLs.
        is_dir: Whether the node is a (non-symlink) directory.
    """

    path: Path
    relative: PurePosixPath
    is_dir: bool


def walk_tree(root: str | Path) -> Iterator[TreeEntry]:
    """Yield every entry below *root* in pre-order.

    A directory is yielded before its children and siblings are visited in
    name order.  Each directory is listed in full when it is popped, so the
    caller may move or delete entries it has already received.  Directory
    symlinks are reported as files and never followed.  A missing root
    yields nothing.
    """
    root = Path(root)
    if not root.is_dir():
        return

    stack: list[tuple[Path, PurePosixPath]] = [(root, PurePosixPath())]
    while stack:
        directory, relative = stack.pop()
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        subdirs: list[tuple[Path, PurePosixPath]] = []
        for entry in entries:
            entry_path = Path(entry.path)
            entry_relative = relative / entry.name
            is_dir = entry.is_dir(follow_symlinks=False)
            yield TreeEntry(path=entry_path, relative=entry_relative, is_dir=is_dir)
            if is_dir:
                subdirs.append((entry_path, entry_relative))

        # Reversed so the alphabetically first subdirectory is popped first.
        stack.extend(reversed(subdirs))
