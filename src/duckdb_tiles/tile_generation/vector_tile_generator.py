"""
Vector Tile Generator

Client-side tiling for features fetched as GeoJSON: an ephemeral, single-zoom
tile index over one request's feature set, tile slicing, and Mapbox Vector
Tile (MVT) serialization.

The index is built for exactly one zoom level so no work is spent on
neighbouring zooms; it lives only for the request that created it.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import geopandas as gpd
import mapbox_vector_tile
import structlog
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from ..utils.spatial_utils import tile_to_mercator_bounds


WGS84_EPSG = 4326
WEB_MERCATOR_EPSG = 3857

# Latitude limit of the Web Mercator projection
MAX_MERCATOR_LAT = 85.0511287798066

MVT_EXTENT = 4096


@dataclass
class FeatureRecord:
    """A parsed feature: geometry in WGS84 plus its ordered properties."""
    geometry: BaseGeometry
    properties: Dict[str, Any] = field(default_factory=dict)


class TileIndex:
    """
    Spatially indexed feature set restricted to one zoom level.

    Geometries are projected to Web Mercator once at build time; tiles are
    cut with the R-tree ``sindex`` and clipped to the tile square.
    """

    def __init__(
        self,
        features: List[FeatureRecord],
        zoom: int,
        extent: int = MVT_EXTENT,
        buffer: int = 0
    ):
        """
        Build the index.

        Args:
            features: Features to index
            zoom: The only zoom level this index serves
            extent: Tile extent in tile units
            buffer: Extra margin around each tile in tile units
        """
        self.zoom = zoom
        self.extent = extent
        self.buffer = buffer

        frame = gpd.GeoDataFrame(
            {"properties": [feature.properties for feature in features]},
            geometry=[feature.geometry for feature in features],
            crs=f"EPSG:{WGS84_EPSG}"
        )
        frame = frame[frame.geometry.notna() & ~frame.geometry.is_empty]

        # Keep geometries inside the projectable latitude band
        frame = frame.copy()
        frame.geometry = frame.geometry.clip_by_rect(
            -180.0, -MAX_MERCATOR_LAT, 180.0, MAX_MERCATOR_LAT
        )
        frame = frame[~frame.geometry.is_empty]

        self.frame = frame.to_crs(epsg=WEB_MERCATOR_EPSG)
        self.frame.sindex  # This creates the spatial index

    def __len__(self) -> int:
        return len(self.frame)

    def get_tile(self, z: int, x: int, y: int) -> Optional[gpd.GeoDataFrame]:
        """
        Extract the features of tile (z, x, y), clipped to the tile.

        Returns:
            GeoDataFrame in Web Mercator, or None if ``z`` is not the indexed
            zoom or the tile holds no features
        """
        if z != self.zoom or self.frame.empty:
            return None

        min_x, min_y, max_x, max_y = self.tile_bounds(z, x, y)

        candidates = self.frame.sindex.query(
            box(min_x, min_y, max_x, max_y),
            predicate="intersects"
        )
        if len(candidates) == 0:
            return None

        tile_features = self.frame.iloc[sorted(candidates)].copy()
        tile_features.geometry = tile_features.geometry.clip_by_rect(min_x, min_y, max_x, max_y)
        tile_features = tile_features[~tile_features.geometry.is_empty]

        if tile_features.empty:
            return None
        return tile_features

    def tile_bounds(self, z: int, x: int, y: int) -> Tuple[float, float, float, float]:
        """Web Mercator bounds of a tile including the buffer margin."""
        min_x, min_y, max_x, max_y = tile_to_mercator_bounds(z, x, y)
        margin = (max_x - min_x) * self.buffer / self.extent
        return (min_x - margin, min_y - margin, max_x + margin, max_y + margin)


class VectorTileGenerator:
    """
    Cuts one tile out of a feature set and serializes it as MVT.

    All features go into a single source layer whose name the rendering
    client binds its style to.
    """

    def __init__(self, source_layer: str = "v", extent: int = MVT_EXTENT, buffer: int = 0):
        """
        Initialize the vector tile generator.

        Args:
            source_layer: Name of the MVT layer written into every tile
            extent: Tile extent in tile units
            buffer: Tile buffer in tile units (0 clips at the tile edge)
        """
        self.source_layer = source_layer
        self.extent = extent
        self.buffer = buffer

        self.logger = structlog.get_logger(
            generator_type="VectorTileGenerator",
            source_layer=source_layer
        )

    def build_index(self, features: List[FeatureRecord], zoom: int) -> TileIndex:
        """Build the ephemeral single-zoom index for one request."""
        return TileIndex(features, zoom, extent=self.extent, buffer=self.buffer)

    def generate_single_tile(self, features: List[FeatureRecord], z: int, x: int, y: int) -> bytes:
        """
        Generate a single vector tile.

        Returns:
            MVT bytes, or empty bytes if the tile holds no features
        """
        if not features:
            return b""

        index = self.build_index(features, z)
        tile_features = index.get_tile(z, x, y)
        if tile_features is None:
            return b""

        layer = self._prepare_layer_data(tile_features)
        if not layer["features"]:
            return b""

        return mapbox_vector_tile.encode(
            [layer],
            default_options={
                "quantize_bounds": tile_to_mercator_bounds(z, x, y),
                "extents": self.extent,
            }
        )

    def _prepare_layer_data(self, tile_features: gpd.GeoDataFrame) -> Dict[str, Any]:
        """Prepare layer data for MVT encoding."""
        features = []

        for feature_id, (geom, properties) in enumerate(
            zip(tile_features.geometry, tile_features["properties"]),
            start=1
        ):
            if geom is None or geom.is_empty:
                continue

            features.append({
                "geometry": geom,
                "properties": encode_properties(properties),
                "id": feature_id
            })

        return {
            "name": self.source_layer,
            "features": features
        }


def encode_properties(properties: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert property values to types MVT can carry.

    Nested objects and arrays become JSON text; None values are dropped.
    """
    encoded = {}
    for key, value in properties.items():
        if value is None:
            continue
        if isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value, separators=(",", ":"))
        elif isinstance(value, (bool, int, float, str)):
            encoded[key] = value
        else:
            encoded[key] = str(value)
    return encoded


def decode_tile(tile_data: bytes) -> Dict[str, Any]:
    """Decode MVT bytes into a layer name -> layer mapping."""
    if not tile_data:
        return {}
    return mapbox_vector_tile.decode(tile_data)


def count_tile_features(tile_data: bytes) -> int:
    """Count features across all layers of an MVT tile."""
    decoded = decode_tile(tile_data)
    return sum(len(layer["features"]) for layer in decoded.values())
