"""
Tile Generation Module

Turns a layer configuration and a tile coordinate into MVT bytes. Two
encoders are available:
- native: DuckDB builds the tile with ST_AsMVT
- geojson: DuckDB returns GeoJSON rows, tiled and encoded in Python
"""

from .base_encoder import EncodeMetrics, EncodeResult, TileEncoder
from .geojson_encoder import GeoJSONTileEncoder
from .native_encoder import NativeTileEncoder
from .query_compiler import TileQueryCompiler
from .vector_tile_generator import VectorTileGenerator

__all__ = [
    "EncodeMetrics",
    "EncodeResult",
    "TileEncoder",
    "GeoJSONTileEncoder",
    "NativeTileEncoder",
    "TileQueryCompiler",
    "VectorTileGenerator"
]
