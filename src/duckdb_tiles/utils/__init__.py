"""
Shared utilities: configuration, logging setup and tile math.
"""

from .config import Config
from .logging_config import configure_logging
from .spatial_utils import TileBounds, TileCoordinate, tile_to_bounds

__all__ = [
    "Config",
    "configure_logging",
    "TileBounds",
    "TileCoordinate",
    "tile_to_bounds"
]
