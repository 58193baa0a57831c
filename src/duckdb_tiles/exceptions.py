"""
Tile Service Exceptions

Exception hierarchy for the tile request pipeline. Every error raised here is
caught before it reaches the rendering client and turned into an empty tile.
"""


class TileServiceError(Exception):
    """Base exception for the tile service"""

    pass


class TileParseError(TileServiceError):
    """Tile URL or tile coordinate is malformed"""

    pass


class ConfigMissingError(TileServiceError):
    """No layer configuration registered for the requested layer id"""

    pass


class ConnectionFailureError(TileServiceError):
    """Could not acquire a data engine connection"""

    pass


class QueryError(TileServiceError):
    """Query construction or execution failed"""

    pass


class EncodingError(TileServiceError):
    """Tile encoding produced a malformed or unusable result"""

    pass


class SpatialIndexError(TileServiceError):
    """Spatial index creation or removal failed"""

    pass
