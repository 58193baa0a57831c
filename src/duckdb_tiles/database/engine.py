"""
DuckDB Data Engine

Owns the root DuckDB connection and hands out short-lived per-request
connections with the spatial extension loaded. Connections are never shared
between concurrent requests; each one is closed on every exit path.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import duckdb
import structlog

from ..exceptions import ConnectionFailureError, QueryError
from ..utils.config import DatabaseConfig


class DataEngine:
    """
    Thin wrapper around an embedded DuckDB database.

    ``connect()`` opens the database once; ``connection()`` yields an
    independent connection per caller.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """
        Initialize the data engine.

        Args:
            config: Database settings (path, spatial extension name)
        """
        self.config = config or DatabaseConfig()
        self.logger = structlog.get_logger(component="DataEngine", database=self.config.path)

        self._root: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self.spatial_available = False

    @property
    def is_connected(self) -> bool:
        return self._root is not None

    def connect(self) -> None:
        """Open the database and install the spatial extension."""
        with self._lock:
            if self._root is not None:
                return
            try:
                self._root = duckdb.connect(
                    database=self.config.path,
                    read_only=self.config.read_only
                )
            except duckdb.Error as e:
                self.logger.error("Failed to open database", error=str(e))
                raise ConnectionFailureError(f"Failed to open database: {e}") from e

        extension = self.config.spatial_extension
        try:
            self._root.execute(f"INSTALL {extension}")
            self._root.execute(f"LOAD {extension}")
            self.spatial_available = True
            self.logger.info("Spatial extension loaded in main connection")
        except duckdb.Error as e:
            # Tile requests will fail and come back empty; the service stays up
            self.logger.error("Could not load spatial extension", error=str(e))

        self.logger.info("DuckDB initialized", spatial=self.spatial_available)

    @contextmanager
    def connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Acquire a fresh connection with the spatial extension loaded.

        The connection is closed when the block exits, including on errors.

        Raises:
            ConnectionFailureError: If the engine is not connected or the
                connection cannot be opened
        """
        conn = self._open_connection()
        try:
            yield conn
        finally:
            try:
                conn.close()
            except duckdb.Error as e:
                self.logger.error("Error closing connection", error=str(e))

    def _open_connection(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._root is None:
                raise ConnectionFailureError("DuckDB not initialized. Call connect() first.")
            try:
                conn = self._root.cursor()
            except duckdb.Error as e:
                raise ConnectionFailureError(f"Failed to create connection: {e}") from e

        try:
            conn.execute(f"LOAD {self.config.spatial_extension}")
        except duckdb.Error as e:
            self.logger.error("Could not load spatial extension in new connection", error=str(e))

        return conn

    def execute(
        self,
        conn: duckdb.DuckDBPyConnection,
        query: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Run a query and materialize every row as a column -> value mapping.

        Raises:
            QueryError: If DuckDB rejects or fails the query
        """
        return execute_query(conn, query, params)

    def close(self) -> None:
        """Close the root connection."""
        with self._lock:
            if self._root is None:
                return
            try:
                self._root.close()
            except duckdb.Error as e:
                self.logger.error("Error closing database", error=str(e))
            finally:
                self._root = None
                self.spatial_available = False

        self.logger.info("DuckDB closed")


def execute_query(
    conn: Any,
    query: str,
    params: Optional[Sequence[Any]] = None
) -> List[Dict[str, Any]]:
    """Execute ``query`` on ``conn`` and return all rows as dictionaries."""
    try:
        cursor = conn.execute(query, list(params) if params is not None else None)
        if cursor.description is None:
            return []
        columns = [column[0] for column in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]
    except duckdb.Error as e:
        raise QueryError(str(e)) from e
