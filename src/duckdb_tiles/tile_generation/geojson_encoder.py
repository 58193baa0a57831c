"""
GeoJSON MVT Encoder

Fetches features as GeoJSON text from DuckDB and performs tiling and MVT
encoding in Python. Slower than the native path, but the feature count and
properties are observable, and it works without ``ST_AsMVT``.
"""

import json
import time
from typing import Any, Dict, List, Optional

from shapely.geometry import shape
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from ..layers.registry import LayerConfig
from ..utils.spatial_utils import TileCoordinate
from .base_encoder import EncodeMetrics, TileEncoder
from .query_compiler import GEOJSON_COLUMN
from .vector_tile_generator import FeatureRecord, VectorTileGenerator


class GeoJSONTileEncoder(TileEncoder):
    """Tile encoder that tiles and encodes GeoJSON rows client-side."""

    name = "geojson"
    tag = "[GeoJSON]"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.generator = VectorTileGenerator(
            source_layer=self.tile_config.source_layer,
            extent=self.tile_config.extent,
            buffer=0
        )

    def _generate(
        self,
        conn: Any,
        config: LayerConfig,
        tile: TileCoordinate,
        metrics: EncodeMetrics
    ) -> bytes:
        # Step 1: run the portable-shape query
        query = self.compiler.portable(config, tile)

        query_start = time.perf_counter()
        rows = self._execute(conn, query.sql, query.params)
        metrics.query_time_ms = (time.perf_counter() - query_start) * 1000.0

        if not rows:
            return b""

        # Step 2: rows -> feature records
        parse_start = time.perf_counter()
        features = self.parse_rows(rows, config)
        metrics.parse_time_ms = (time.perf_counter() - parse_start) * 1000.0
        metrics.feature_count = len(features)

        if not features:
            return b""

        # Step 3: tile index -> tile slice -> MVT
        convert_start = time.perf_counter()
        data = self.generator.generate_single_tile(features, tile.z, tile.x, tile.y)
        metrics.convert_time_ms = (time.perf_counter() - convert_start) * 1000.0

        return data

    def parse_rows(self, rows: List[Dict[str, Any]], config: LayerConfig) -> List[FeatureRecord]:
        """Build feature records from query rows, skipping unparseable geometry."""
        features = []

        for row in rows:
            geometry = self._parse_geometry(row.get(GEOJSON_COLUMN))
            if geometry is None:
                continue

            features.append(FeatureRecord(
                geometry=geometry,
                properties=self._parse_properties(row, config)
            ))

        return features

    def _parse_geometry(self, geojson_text: Optional[str]) -> Optional[BaseGeometry]:
        if geojson_text is None:
            return None

        try:
            parsed = json.loads(geojson_text)
            if not isinstance(parsed, dict) or "type" not in parsed:
                self.logger.warning("Invalid GeoJSON structure")
                return None
            geometry = shape(parsed)
        except (ValueError, TypeError, KeyError, AttributeError, ShapelyError) as e:
            self.logger.warning("Failed to parse GeoJSON", error=str(e))
            return None

        if geometry.is_empty:
            return None
        return geometry

    def _parse_properties(self, row: Dict[str, Any], config: LayerConfig) -> Dict[str, Any]:
        properties = {}

        for column in self.compiler.property_columns(config):
            value = row.get(column)
            if value is None:
                continue

            if isinstance(value, str) and value[:1] in ("{", "["):
                try:
                    properties[column] = json.loads(value)
                    continue
                except ValueError:
                    pass

            properties[column] = value

        return properties
