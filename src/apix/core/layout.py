"""On-disk storage layout and directory bootstrap.

The storage root looks like this::

    <storage_root>/
        gallery/
            upload/  outputs/  image_editor/  extra/
        history/
            upload/
        data/                  flat JSON documents
        uploads/               legacy root, removed once migrated
            gallery/ ...
            history/ ...

:class:`StorageLayout` captures these locations as absolute, normalised
paths so the resolver can compare path prefixes without touching the disk.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from apix.core.config import ApixConfig

logger = logging.getLogger(__name__)


class Category(str, Enum):
    """Top-level storage partitions.  The set is closed."""

    GALLERY = "gallery"
    HISTORY = "history"


# Well-known subfolders created under each category on startup.
CATEGORY_SUBFOLDERS: dict[Category, tuple[str, ...]] = {
    Category.GALLERY: ("upload", "outputs", "image_editor", "extra"),
    Category.HISTORY: ("upload",),
}


@dataclass(frozen=True)
class StorageLayout:
    """Absolute locations of every storage directory.

    Attributes:
        root: Storage root.
        category_dirs: Category root for each :class:`Category`.
        data_dir: Directory for JSON documents.
        legacy_root: Pre-migration upload root.
        legacy_category_dirs: Per-category directories under ``legacy_root``.
    """

    root: Path
    category_dirs: dict[Category, Path]
    data_dir: Path
    legacy_root: Path
    legacy_category_dirs: dict[Category, Path]

    @classmethod
    def from_root(
        cls,
        root: str | Path,
        *,
        legacy_dirname: str = "uploads",
        data_dirname: str = "data",
    ) -> StorageLayout:
        """Build a layout under *root*.

        The root is made absolute and normalised with :func:`os.path.abspath`
        (no symlink resolution) so every derived directory is a plain string
        prefix of the paths the resolver produces.
        """
        root = Path(os.path.abspath(root))
        legacy_root = root / legacy_dirname
        return cls(
            root=root,
            category_dirs={category: root / category.value for category in Category},
            data_dir=root / data_dirname,
            legacy_root=legacy_root,
            legacy_category_dirs={
                category: legacy_root / category.value for category in Category
            },
        )

    @classmethod
    def from_config(cls, cfg: ApixConfig) -> StorageLayout:
        """Build the layout described by an :class:`ApixConfig`."""
        return cls.from_root(
            cfg.storage_root,
            legacy_dirname=cfg.legacy_dirname,
            data_dirname=cfg.data_dirname,
        )


def ensure_storage_layout(layout: StorageLayout) -> None:
    """Create the category roots, their well-known subfolders and the data dir.

    Safe to call any number of times; existing directories are left alone.

    Args:
        layout: The storage layout to materialise.
    """
    for category, category_dir in layout.category_dirs.items():
        category_dir.mkdir(parents=True, exist_ok=True)
        for subfolder in CATEGORY_SUBFOLDERS.get(category, ()):
            (category_dir / subfolder).mkdir(parents=True, exist_ok=True)

    layout.data_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Storage layout ready under %s", layout.root)
