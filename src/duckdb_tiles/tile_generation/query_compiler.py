"""
Tile Query Compiler

Builds the spatially-filtered, zoom-adapted SQL for one layer and one tile.
Two shapes are produced:

- delegated: DuckDB simplifies, projects and encodes the features itself and
  returns a single ``mvt`` BLOB (``ST_AsMVT``)
- portable: DuckDB returns GeoJSON text plus every property column as text,
  and the tile is cut and encoded in Python

Identifiers go through ``quote_identifier``; every numeric value that comes
from the request (tile coordinate, bounds, tolerance) is a bound parameter.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..database.sql import qualified_name, quote_identifier, quote_literal
from ..layers.registry import LayerConfig
from ..utils.config import TileConfig
from ..utils.spatial_utils import TileCoordinate, simplify_tolerance, tile_to_bounds


# Internal column/struct names; property columns with these names are dropped
GEOMETRY_KEY = "__geom"
GEOJSON_COLUMN = "__geojson"
MVT_COLUMN = "mvt"


@dataclass
class CompiledQuery:
    """SQL text plus its positional parameters."""
    sql: str
    params: List[Any] = field(default_factory=list)


class TileQueryCompiler:
    """Compiles tile queries for a layer configuration and tile coordinate."""

    def __init__(self, tile_config: Optional[TileConfig] = None):
        self.tile_config = tile_config or TileConfig()

    def delegated(self, config: LayerConfig, tile: TileCoordinate) -> CompiledQuery:
        """
        Query returning one pre-encoded tile in column ``mvt``.

        The geometry is simplified (topology-preserving) at the zoom's
        tolerance, projected to EPSG:3857, fitted into tile pixel space by
        ``ST_AsMVTGeom``, and the feature count is capped.
        """
        params: List[Any] = []
        geometry = quote_identifier(config.geometry_column)
        extent = int(self.tile_config.extent)
        buffer = int(self.tile_config.buffer)
        max_features = int(self.tile_config.max_features)

        simplified = self._simplified_geometry(geometry, tile.z, params)

        members = [
            f"{quote_literal(GEOMETRY_KEY)}: ST_AsMVTGeom("
            f"ST_Transform({simplified}, 'EPSG:4326', 'EPSG:3857', true), "
            f"ST_Extent(ST_TileEnvelope(CAST(? AS INTEGER), CAST(? AS INTEGER), CAST(? AS INTEGER))), "
            f"{extent}, {buffer}, false)"
        ]
        params.extend([tile.z, tile.x, tile.y])

        for column in self.property_columns(config):
            members.append(f"{quote_literal(column)}: {property_expression(column)}")

        where = self._spatial_filter(geometry, tile, params)

        sql = (
            "WITH tile_data AS (\n"
            "    SELECT {\n"
            "        " + ",\n        ".join(members) + "\n"
            "    } AS feature\n"
            f"    FROM {qualified_name(config.table_name, config.schema)}\n"
            f"    WHERE {where}\n"
            f"    LIMIT {max_features}\n"
            ")\n"
            f"SELECT ST_AsMVT(feature, {quote_literal(self.tile_config.source_layer)}, "
            f"{extent}, {quote_literal(GEOMETRY_KEY)}) AS {MVT_COLUMN}\n"
            "FROM tile_data\n"
            f"WHERE feature.{quote_identifier(GEOMETRY_KEY)} IS NOT NULL"
        )

        return CompiledQuery(sql=sql, params=params)

    def portable(self, config: LayerConfig, tile: TileCoordinate) -> CompiledQuery:
        """
        Query returning GeoJSON geometry text plus each property as text.

        No row limit is applied here; the Python tiler bounds the tile.
        """
        params: List[Any] = []
        geometry = quote_identifier(config.geometry_column)

        simplified = self._simplified_geometry(geometry, tile.z, params)
        columns = [f"ST_AsGeoJSON({simplified}) AS {quote_identifier(GEOJSON_COLUMN)}"]
        for column in self.property_columns(config):
            columns.append(f"{property_expression(column)} AS {quote_identifier(column)}")

        where = self._spatial_filter(geometry, tile, params)

        sql = (
            "SELECT\n"
            "    " + ",\n    ".join(columns) + "\n"
            f"FROM {qualified_name(config.table_name, config.schema)}\n"
            f"WHERE {where}"
        )

        return CompiledQuery(sql=sql, params=params)

    def _simplified_geometry(self, geometry: str, z: int, params: List[Any]) -> str:
        tolerance = simplify_tolerance(z)
        if tolerance <= 0:
            return geometry
        params.append(tolerance)
        return f"ST_SimplifyPreserveTopology({geometry}, CAST(? AS DOUBLE))"

    def _spatial_filter(self, geometry: str, tile: TileCoordinate, params: List[Any]) -> str:
        bounds = tile_to_bounds(tile.z, tile.x, tile.y)
        params.extend(bounds.as_tuple())
        return (
            f"{geometry} IS NOT NULL AND ST_Intersects({geometry}, ST_MakeEnvelope("
            "CAST(? AS DOUBLE), CAST(? AS DOUBLE), CAST(? AS DOUBLE), CAST(? AS DOUBLE)))"
        )

    def property_columns(self, config: LayerConfig) -> List[str]:
        """Declared property columns minus the internal column names."""
        return [
            column for column in config.property_columns
            if column not in (GEOMETRY_KEY, GEOJSON_COLUMN)
        ]


def property_expression(column: str) -> str:
    """Project a property column as text; objects and arrays become JSON text."""
    quoted = quote_identifier(column)
    return (
        f"CASE WHEN {quoted} IS NULL THEN NULL "
        f"WHEN json_type(to_json({quoted})) IN ('OBJECT', 'ARRAY') "
        f"THEN CAST(to_json({quoted}) AS VARCHAR) "
        f"ELSE TRY_CAST({quoted} AS VARCHAR) END"
    )
