"""
Native MVT Encoder

Delegates the whole encode to DuckDB's ``ST_AsMVT``: one round trip, the
result column already holds the binary tile. Feature count is not
observable on this path and is reported as -1.
"""

import time
from typing import Any

from ..exceptions import EncodingError
from ..layers.registry import LayerConfig
from ..utils.spatial_utils import TileCoordinate
from .base_encoder import EncodeMetrics, TileEncoder
from .query_compiler import MVT_COLUMN


class NativeTileEncoder(TileEncoder):
    """Tile encoder that passes DuckDB's ``ST_AsMVT`` output through verbatim."""

    name = "native"
    tag = "[Native]"

    def _generate(
        self,
        conn: Any,
        config: LayerConfig,
        tile: TileCoordinate,
        metrics: EncodeMetrics
    ) -> bytes:
        query = self.compiler.delegated(config, tile)

        query_start = time.perf_counter()
        rows = self._execute(conn, query.sql, query.params)
        metrics.query_time_ms = (time.perf_counter() - query_start) * 1000.0

        if not rows or rows[0].get(MVT_COLUMN) is None:
            return b""

        mvt = rows[0][MVT_COLUMN]
        if isinstance(mvt, (bytes, bytearray, memoryview)):
            return bytes(mvt)

        raise EncodingError(f"Unexpected {type(mvt).__name__} in {MVT_COLUMN} column")

    def _initial_feature_count(self) -> int:
        return -1
