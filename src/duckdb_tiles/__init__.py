"""
DuckDB Vector Tiles

On-the-fly Mapbox Vector Tile generation from DuckDB tables for web map
clients. Tiles are encoded either natively by DuckDB's spatial extension or
from GeoJSON rows tiled and encoded in Python.
"""

__version__ = "1.0.0"

# Core modules
from . import database
from . import layers
from . import monitoring
from . import protocol
from . import tile_generation
from . import utils
from .context import TileServiceContext

__all__ = [
    "database",
    "layers",
    "monitoring",
    "protocol",
    "tile_generation",
    "utils",
    "TileServiceContext"
]
