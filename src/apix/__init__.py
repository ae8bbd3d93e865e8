"""aPix storage backend - image and JSON document storage for the aPix client."""

__version__ = "0.3.0"

from apix.core.config import ApixConfig, config

__all__ = [
    "ApixConfig",
    "config",
]
