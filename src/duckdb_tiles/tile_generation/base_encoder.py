"""
Base Tile Encoder

Common interface for turning one layer + tile coordinate into MVT bytes.
Concrete encoders implement ``_generate``; ``encode`` wraps it with timing,
logging and the empty-tile fallback so no encoder ever raises to the caller.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import structlog

from ..database.engine import execute_query
from ..layers.registry import LayerConfig
from ..utils.config import TileConfig
from ..utils.spatial_utils import TileCoordinate
from .query_compiler import TileQueryCompiler


@dataclass
class EncodeMetrics:
    """Timings (milliseconds) and sizes reported by an encoder."""
    query_time_ms: float = 0.0
    parse_time_ms: float = 0.0
    convert_time_ms: float = 0.0
    total_time_ms: float = 0.0
    feature_count: int = -1  # -1 when the encoder cannot observe it
    tile_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EncodeResult:
    """Encoded tile payload plus the metrics gathered while producing it."""
    data: bytes
    metrics: EncodeMetrics


class TileEncoder(ABC):
    """
    Abstract base class for tile encoding strategies.

    Subclasses set ``name`` (used for selection and configuration) and
    ``tag`` (prefixed to metric tile ids).
    """

    name: str = ""
    tag: str = ""

    def __init__(
        self,
        tile_config: Optional[TileConfig] = None,
        compiler: Optional[TileQueryCompiler] = None
    ):
        """
        Initialize the encoder.

        Args:
            tile_config: Tile settings (extent, source layer, feature cap)
            compiler: Query compiler; built from ``tile_config`` when omitted
        """
        self.tile_config = tile_config or TileConfig()
        self.compiler = compiler or TileQueryCompiler(self.tile_config)
        self.logger = structlog.get_logger(encoder_type=self.__class__.__name__)

    def encode(self, conn: Any, config: LayerConfig, tile: TileCoordinate) -> EncodeResult:
        """
        Encode one tile.

        Args:
            conn: Open connection with the spatial extension loaded
            config: Layer configuration
            tile: Tile coordinate

        Returns:
            EncodeResult; ``data`` is empty when the tile has no features or
            any step failed
        """
        start_time = time.perf_counter()
        metrics = EncodeMetrics(feature_count=self._initial_feature_count())

        try:
            data = self._generate(conn, config, tile, metrics)
        except Exception as e:
            self.logger.error(
                "Tile encoding failed",
                tile_id=tile.tile_id,
                table=config.table_name,
                error_type=type(e).__name__,
                error=str(e)
            )
            data = b""

        metrics.tile_size = len(data)
        metrics.total_time_ms = _elapsed_ms(start_time)

        return EncodeResult(data=data, metrics=metrics)

    @abstractmethod
    def _generate(
        self,
        conn: Any,
        config: LayerConfig,
        tile: TileCoordinate,
        metrics: EncodeMetrics
    ) -> bytes:
        """
        Produce the tile bytes, filling in ``metrics`` as steps complete.

        May raise; ``encode`` logs and converts any error to an empty tile.
        """
        pass

    def _initial_feature_count(self) -> int:
        return 0

    def _execute(self, conn: Any, sql: str, params) -> list:
        return execute_query(conn, sql, params)


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000.0
