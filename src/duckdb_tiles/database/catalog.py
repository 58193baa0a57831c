"""
Table catalog helpers used when a layer is added: column discovery, geometry
column detection, geometry type sampling and layer extent.
"""

from typing import List, Optional, Tuple

import structlog

from ..exceptions import TileServiceError
from ..layers.registry import LayerConfig
from .engine import DataEngine
from .sql import qualified_name, quote_identifier

logger = structlog.get_logger(component="catalog")


def get_table_columns(engine: DataEngine, table_name: str, schema: Optional[str] = None) -> List[str]:
    """Get all columns of a table in ordinal order."""
    query = (
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_name = ?"
    )
    params = [table_name]
    if schema:
        query += " AND table_schema = ?"
        params.append(schema)
    query += " ORDER BY ordinal_position"

    try:
        with engine.connection() as conn:
            rows = engine.execute(conn, query, params)
    except TileServiceError as e:
        logger.error("Error getting table columns", table=table_name, error=str(e))
        return []

    return [row["column_name"] for row in rows]


def detect_geometry_columns(engine: DataEngine, table_name: str, schema: Optional[str] = None) -> List[str]:
    """Detect columns of GEOMETRY type in a table."""
    query = (
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_name = ? AND data_type ILIKE '%geometry%'"
    )
    params = [table_name]
    if schema:
        query += " AND table_schema = ?"
        params.append(schema)
    query += " ORDER BY ordinal_position"

    try:
        with engine.connection() as conn:
            rows = engine.execute(conn, query, params)
    except TileServiceError as e:
        logger.error("Error detecting geometry columns", table=table_name, error=str(e))
        return []

    return [row["column_name"] for row in rows]


def get_geometry_type(engine: DataEngine, config: LayerConfig) -> Optional[str]:
    """
    Sample the geometry type of a layer.

    Returns:
        One of ``"polygon"``, ``"line"``, ``"point"``, or None when the table
        is empty or the type cannot be determined
    """
    geometry = quote_identifier(config.geometry_column)
    query = (
        f"SELECT ST_GeometryType({geometry}) AS geom_type "
        f"FROM {qualified_name(config.table_name, config.schema)} "
        f"WHERE {geometry} IS NOT NULL LIMIT 1"
    )

    try:
        with engine.connection() as conn:
            rows = engine.execute(conn, query)
    except TileServiceError as e:
        logger.warning("Could not determine geometry type", table=config.table_name, error=str(e))
        return None

    if not rows or rows[0]["geom_type"] is None:
        return None

    geom_type = str(rows[0]["geom_type"]).lower()
    if "polygon" in geom_type:
        return "polygon"
    if "line" in geom_type:
        return "line"
    return "point"


def get_layer_extent(
    engine: DataEngine,
    config: LayerConfig
) -> Optional[Tuple[float, float, float, float]]:
    """Bounding box (min_x, min_y, max_x, max_y) of all geometries in a layer."""
    geometry = quote_identifier(config.geometry_column)
    query = (
        f"SELECT ST_XMin(ST_Extent_Agg({geometry})) AS min_x, "
        f"ST_YMin(ST_Extent_Agg({geometry})) AS min_y, "
        f"ST_XMax(ST_Extent_Agg({geometry})) AS max_x, "
        f"ST_YMax(ST_Extent_Agg({geometry})) AS max_y "
        f"FROM {qualified_name(config.table_name, config.schema)}"
    )

    try:
        with engine.connection() as conn:
            rows = engine.execute(conn, query)
    except TileServiceError as e:
        logger.warning("Could not compute layer extent", table=config.table_name, error=str(e))
        return None

    if not rows or rows[0]["min_x"] is None:
        return None

    row = rows[0]
    return (row["min_x"], row["min_y"], row["max_x"], row["max_y"])
