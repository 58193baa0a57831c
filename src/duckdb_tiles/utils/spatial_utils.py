"""
Tile Math

Slippy-map tile arithmetic shared by both tile encoders: tile coordinate to
geographic and Web Mercator bounds, and the zoom-dependent simplification
tolerance.
"""

import math
from dataclasses import dataclass
from typing import Tuple

from ..exceptions import TileParseError


# Half the Web Mercator world width in meters
MERCATOR_ORIGIN = 20037508.342789244

# Simplification reaches full precision at this zoom
FULL_PRECISION_ZOOM = 15
MAX_SIMPLIFY_TOLERANCE = 0.001

DEFAULT_MAX_ZOOM = 22


@dataclass(frozen=True)
class TileCoordinate:
    """Zoom level plus column/row index of a slippy-map tile."""
    z: int
    x: int
    y: int

    @classmethod
    def create(cls, z: int, x: int, y: int, max_zoom: int = DEFAULT_MAX_ZOOM) -> "TileCoordinate":
        """
        Build a validated tile coordinate.

        Raises:
            TileParseError: If z is outside [0, max_zoom] or x/y outside [0, 2^z)
        """
        if not 0 <= z <= max_zoom:
            raise TileParseError(f"Zoom level {z} outside [0, {max_zoom}]")
        n = 1 << z
        if not (0 <= x < n and 0 <= y < n):
            raise TileParseError(f"Tile {z}/{x}/{y} outside the tile grid")
        return cls(z=z, x=x, y=y)

    @property
    def tile_id(self) -> str:
        """Get unique tile identifier."""
        return f"{self.z}/{self.x}/{self.y}"


@dataclass(frozen=True)
class TileBounds:
    """Geographic bounding box of a tile in degrees."""
    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_lng, self.min_lat, self.max_lng, self.max_lat)


def tile_to_bounds(z: int, x: int, y: int) -> TileBounds:
    """Convert tile coordinates to a WGS84 bounding box."""
    n = 2.0 ** z

    # Longitude is linear in x
    min_lng = x / n * 360.0 - 180.0
    max_lng = (x + 1) / n * 360.0 - 180.0

    # Latitude through the inverse Web Mercator projection
    north = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y / n))))
    south = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * (y + 1) / n))))

    return TileBounds(
        min_lng=min_lng,
        min_lat=min(north, south),
        max_lng=max_lng,
        max_lat=max(north, south),
    )


def tile_to_mercator_bounds(z: int, x: int, y: int) -> Tuple[float, float, float, float]:
    """Convert tile coordinates to an EPSG:3857 bounding box (minx, miny, maxx, maxy)."""
    size = 2 * MERCATOR_ORIGIN / (2 ** z)
    min_x = -MERCATOR_ORIGIN + x * size
    max_y = MERCATOR_ORIGIN - y * size
    return (min_x, max_y - size, min_x + size, max_y)


def simplify_tolerance(z: int) -> float:
    """
    Simplification tolerance in degrees for a zoom level.

    Linear from MAX_SIMPLIFY_TOLERANCE at zoom 0 down to zero at
    FULL_PRECISION_ZOOM; zero (no simplification) from there on.
    """
    if z >= FULL_PRECISION_ZOOM:
        return 0.0

    slope = -MAX_SIMPLIFY_TOLERANCE / FULL_PRECISION_ZOOM
    return round(slope * z + MAX_SIMPLIFY_TOLERANCE, 6)
