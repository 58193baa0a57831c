"""
Tile protocol adapter between the map client's tile URLs and the encoders.
"""

from .adapter import TileProtocolHandler, parse_tile_url

__all__ = [
    "TileProtocolHandler",
    "parse_tile_url"
]
