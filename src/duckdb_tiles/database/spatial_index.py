"""
Spatial Index Manager

Creates and drops the R-tree index that accelerates the tile queries'
``ST_Intersects`` filter. Everything here is best-effort: a layer without an
index still serves correct tiles, only slower, so failures are logged and
never propagated to the caller.
"""

import threading
from typing import Iterable, Optional

import structlog

from ..exceptions import SpatialIndexError, TileServiceError
from ..layers.registry import LayerConfig
from .engine import DataEngine
from .sql import qualified_name, quote_identifier


def index_name_for(table_name: str, geometry_column: str) -> str:
    """Deterministic index name for a table/geometry column pair."""
    return f"idx_{table_name}_{geometry_column}"


class SpatialIndexManager:
    """
    Owns the lifecycle of per-layer spatial indexes.

    Indexing can be switched off globally, in which case ``ensure_index``
    is a no-op and layers are served unindexed.
    """

    def __init__(self, engine: DataEngine, enabled: bool = False):
        """
        Initialize the index manager.

        Args:
            engine: Data engine used to issue index DDL
            enabled: Initial global indexing mode
        """
        self.engine = engine
        self.enabled = enabled
        self.logger = structlog.get_logger(component="SpatialIndexManager")

        # Guards writes to LayerConfig.index_name
        self._lock = threading.RLock()

    def ensure_index(
        self,
        table_name: str,
        geometry_column: str,
        schema: Optional[str] = None
    ) -> Optional[str]:
        """
        Make sure an R-tree index exists on ``table_name.geometry_column``.

        Returns:
            The index name, or None if indexing is disabled or creation failed
        """
        if not self.enabled:
            return None

        index_name = index_name_for(table_name, geometry_column)

        try:
            with self.engine.connection() as conn:
                if self._index_exists(conn, index_name, table_name, schema):
                    self.logger.debug("Spatial index already present", index=index_name)
                    return index_name

                self._create_index(conn, index_name, table_name, geometry_column, schema)

            self.logger.info(
                "Created spatial index",
                index=index_name,
                table=table_name,
                geometry_column=geometry_column
            )
            return index_name

        except TileServiceError as e:
            self.logger.error(
                "Failed to create spatial index",
                index=index_name,
                table=table_name,
                error=str(e)
            )
            return None

    def drop_index(self, index_name: str, schema: Optional[str] = None) -> None:
        """Drop an index, logging rather than raising on failure."""
        try:
            with self.engine.connection() as conn:
                self._drop_index(conn, index_name, schema)
            self.logger.info("Dropped spatial index", index=index_name)
        except TileServiceError as e:
            self.logger.error("Failed to drop spatial index", index=index_name, error=str(e))

    def attach(self, config: LayerConfig) -> Optional[str]:
        """Ensure an index for a layer and record it on the config."""
        index_name = self.ensure_index(config.table_name, config.geometry_column, config.schema)
        with self._lock:
            config.index_name = index_name
        return index_name

    def release(self, config: LayerConfig) -> None:
        """Drop a layer's attached index and clear the reference."""
        with self._lock:
            index_name = config.index_name
            config.index_name = None

        if index_name:
            self.drop_index(index_name, config.schema)

    def set_global_enabled(self, enabled: bool, layers: Iterable[LayerConfig] = ()) -> None:
        """
        Switch indexing on or off for every given layer.

        Layers are processed one after another; a failure on one layer never
        stops the others, so the batch may end partially applied.
        """
        self.enabled = enabled
        self.logger.info("Spatial indexing toggled", enabled=enabled)

        # Disabling drops the index, so enabling again issues a new CREATE
        # under the same deterministic name. An index that survived a failed
        # drop is found by ensure_index and reused.
        for config in layers:
            if enabled:
                if config.index_name is None:
                    self.attach(config)
            else:
                self.release(config)

    def _index_exists(self, conn, index_name: str, table_name: str, schema: Optional[str]) -> bool:
        query = (
            "SELECT index_name FROM duckdb_indexes() "
            "WHERE index_name = ? AND table_name = ?"
        )
        params = [index_name, table_name]
        if schema:
            query += " AND schema_name = ?"
            params.append(schema)

        rows = self.engine.execute(conn, query, params)
        return len(rows) > 0

    def _create_index(
        self,
        conn,
        index_name: str,
        table_name: str,
        geometry_column: str,
        schema: Optional[str]
    ) -> None:
        query = (
            f"CREATE INDEX {quote_identifier(index_name)} "
            f"ON {qualified_name(table_name, schema)} "
            f"USING RTREE ({quote_identifier(geometry_column)})"
        )
        try:
            self.engine.execute(conn, query)
        except TileServiceError as e:
            raise SpatialIndexError(f"CREATE INDEX {index_name} failed: {e}") from e

    def _drop_index(self, conn, index_name: str, schema: Optional[str]) -> None:
        query = f"DROP INDEX IF EXISTS {qualified_name(index_name, schema)}"
        try:
            self.engine.execute(conn, query)
        except TileServiceError as e:
            raise SpatialIndexError(f"DROP INDEX {index_name} failed: {e}") from e
