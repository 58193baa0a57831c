"""
Tile Protocol Handler

Entry point for tile fetches from the rendering client. A request walks
parse -> config lookup -> connection acquire -> encoder dispatch -> encode
-> metrics record -> connection release -> respond; every failure along the
way ends in an empty payload instead of an exception.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Dict

import structlog

from ..database.engine import DataEngine
from ..exceptions import ConfigMissingError, TileParseError, TileServiceError
from ..layers.registry import LayerConfig, LayerRegistry
from ..monitoring.metrics import MetricsCollector, TileMetric
from ..tile_generation.base_encoder import EncodeResult, TileEncoder
from ..utils.spatial_utils import DEFAULT_MAX_ZOOM, TileCoordinate

EMPTY_TILE = b""

TILE_EXTENSIONS = ("pbf", "mvt")


@dataclass(frozen=True)
class TileRequest:
    """A parsed tile URL."""
    layer_id: str
    tile: TileCoordinate


def parse_tile_url(url: str, scheme: str = "duckdb", max_zoom: int = DEFAULT_MAX_ZOOM) -> TileRequest:
    """
    Parse ``<scheme>://<layer_id>/<z>/<x>/<y>.<ext>``.

    Raises:
        TileParseError: If the URL does not match or the coordinate is
            outside the tile grid
    """
    pattern = (
        rf"^{re.escape(scheme)}://([^/]+)/(\d+)/(\d+)/(\d+)\."
        rf"({'|'.join(TILE_EXTENSIONS)})$"
    )
    match = re.match(pattern, url or "")
    if not match:
        raise TileParseError(f"Invalid tile URL: {url}")

    layer_id, z, x, y, _ = match.groups()
    tile = TileCoordinate.create(int(z), int(x), int(y), max_zoom=max_zoom)
    return TileRequest(layer_id=layer_id, tile=tile)


class TileProtocolHandler:
    """
    Resolves tile requests to MVT bytes.

    Holds no per-request state: each call acquires its own connection, so
    any number of requests may run concurrently.
    """

    def __init__(
        self,
        engine: DataEngine,
        registry: LayerRegistry,
        metrics: MetricsCollector,
        encoders: Dict[str, TileEncoder],
        default_encoder: str = "native",
        scheme: str = "duckdb",
        max_zoom: int = DEFAULT_MAX_ZOOM
    ):
        """
        Initialize the protocol handler.

        Args:
            engine: Data engine providing per-request connections
            registry: Active layer configurations
            metrics: Collector receiving one record per encoded tile
            encoders: Available encoders by name
            default_encoder: Encoder used by layers without a pinned one
            scheme: URL scheme this handler answers for
            max_zoom: Highest accepted zoom level
        """
        self.engine = engine
        self.registry = registry
        self.metrics = metrics
        self.encoders = dict(encoders)
        self.scheme = scheme
        self.max_zoom = max_zoom
        self.logger = structlog.get_logger(component="TileProtocolHandler", scheme=scheme)

        self._default_encoder = None
        self.default_encoder = default_encoder

    @property
    def default_encoder(self) -> str:
        return self._default_encoder

    @default_encoder.setter
    def default_encoder(self, name: str) -> None:
        if name not in self.encoders:
            raise ValueError(
                f"Unknown encoder '{name}', expected one of {sorted(self.encoders)}"
            )
        self._default_encoder = name

    def select_encoder(self, config: LayerConfig) -> TileEncoder:
        """Encoder pinned on the layer, else the global default."""
        if config.encoder and config.encoder in self.encoders:
            return self.encoders[config.encoder]
        if config.encoder:
            self.logger.warning(
                "Layer pinned to unknown encoder, using default",
                encoder=config.encoder,
                default=self._default_encoder
            )
        return self.encoders[self._default_encoder]

    async def handle_url(self, url: str) -> bytes:
        """Asynchronously resolve a tile URL; never raises."""
        return await asyncio.to_thread(self.fetch_url, url)

    async def handle_tile_request(self, layer_id: str, z: int, x: int, y: int) -> bytes:
        """Asynchronously resolve a tile; never raises."""
        return await asyncio.to_thread(self.fetch_tile, layer_id, z, x, y)

    def fetch_url(self, url: str) -> bytes:
        try:
            request = parse_tile_url(url, scheme=self.scheme, max_zoom=self.max_zoom)
        except TileParseError as e:
            self.logger.error("Invalid tile URL", url=url, error=str(e))
            return EMPTY_TILE

        return self._serve(request.layer_id, request.tile)

    def fetch_tile(self, layer_id: str, z: int, x: int, y: int) -> bytes:
        try:
            tile = TileCoordinate.create(z, x, y, max_zoom=self.max_zoom)
        except TileParseError as e:
            self.logger.error("Invalid tile coordinate", layer_id=layer_id, error=str(e))
            return EMPTY_TILE

        return self._serve(layer_id, tile)

    def _serve(self, layer_id: str, tile: TileCoordinate) -> bytes:
        start_time = time.perf_counter()

        try:
            config = self.registry.get(layer_id)
            if config is None:
                raise ConfigMissingError(f"No configuration found for: {layer_id}")

            encoder = self.select_encoder(config)

            with self.engine.connection() as conn:
                result = encoder.encode(conn, config, tile)
                self._record(encoder, tile, result, start_time)

            return result.data

        except ConfigMissingError as e:
            self.logger.error("Layer not registered", layer_id=layer_id, error=str(e))
        except TileServiceError as e:
            self.logger.error(
                "Tile request failed",
                layer_id=layer_id,
                tile_id=tile.tile_id,
                error_type=type(e).__name__,
                error=str(e)
            )
        except Exception:
            self.logger.exception("Error in tile protocol handler", layer_id=layer_id, tile_id=tile.tile_id)

        return EMPTY_TILE

    def _record(
        self,
        encoder: TileEncoder,
        tile: TileCoordinate,
        result: EncodeResult,
        start_time: float
    ) -> None:
        encode_metrics = result.metrics
        total_time_ms = (time.perf_counter() - start_time) * 1000.0

        self.metrics.add_metric(TileMetric(
            tile_id=f"{encoder.tag} {tile.tile_id}",
            fetch_time_ms=encode_metrics.query_time_ms + encode_metrics.parse_time_ms,
            convert_time_ms=encode_metrics.convert_time_ms,
            total_time_ms=total_time_ms,
            feature_count=encode_metrics.feature_count,
            tile_size_bytes=encode_metrics.tile_size
        ))

        self.logger.info(
            "Tile served",
            tile_id=tile.tile_id,
            encoder=encoder.name,
            features=encode_metrics.feature_count,
            tile_size=encode_metrics.tile_size,
            total_time_ms=round(total_time_ms, 2)
        )
