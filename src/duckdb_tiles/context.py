"""
Tile Service Context

Owns every piece of shared state the tile pipeline needs (data engine, layer
registry, spatial index manager, metrics collector, encoders, protocol
handler) so that independent instances can coexist and be torn down
explicitly.
"""

import itertools
import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import aiofiles
import structlog

from .database.catalog import detect_geometry_columns
from .database.engine import DataEngine
from .database.spatial_index import SpatialIndexManager
from .layers.registry import LayerConfig, LayerRegistry
from .monitoring.metrics import MetricsCollector
from .protocol.adapter import TileProtocolHandler
from .tile_generation.base_encoder import TileEncoder
from .tile_generation.geojson_encoder import GeoJSONTileEncoder
from .tile_generation.native_encoder import NativeTileEncoder
from .tile_generation.query_compiler import TileQueryCompiler
from .utils.config import Config


LAYER_ID_PREFIX = "duckdb-layer"


class TileServiceContext:
    """
    Composition root for one tile service instance.

    ``register_layer`` / ``unregister_layer`` are the hooks the rendering
    client calls around its own layer add/remove lifecycle.
    """

    def __init__(self, config: Optional[Config] = None, engine: Optional[DataEngine] = None):
        """
        Build the service graph.

        Args:
            config: Service configuration; defaults are used when omitted
            engine: Pre-built data engine (tests inject one)
        """
        self.config = config or Config()
        self.logger = structlog.get_logger(component="TileServiceContext")

        self.engine = engine or DataEngine(self.config.database)
        self.index_manager = SpatialIndexManager(self.engine, enabled=self.config.index.enabled)
        self.registry = LayerRegistry(index_manager=self.index_manager)
        self.metrics = MetricsCollector(capacity=self.config.metrics.capacity)

        compiler = TileQueryCompiler(self.config.tiles)
        self.encoders: Dict[str, TileEncoder] = {
            encoder.name: encoder
            for encoder in (
                NativeTileEncoder(self.config.tiles, compiler),
                GeoJSONTileEncoder(self.config.tiles, compiler),
            )
        }

        self.protocol = TileProtocolHandler(
            engine=self.engine,
            registry=self.registry,
            metrics=self.metrics,
            encoders=self.encoders,
            default_encoder=self.config.tiles.default_encoder,
            scheme=self.config.tiles.url_scheme,
            max_zoom=self.config.tiles.max_zoom
        )

        self._layer_counter = itertools.count()
        self._counter_lock = threading.Lock()

    def start(self) -> None:
        """Open the data engine."""
        self.engine.connect()
        self.logger.info(
            "Tile service started",
            encoder=self.protocol.default_encoder,
            spatial_index=self.index_manager.enabled
        )

    def close(self) -> None:
        """Drop every layer (and its index) and close the data engine."""
        for layer_id in list(self.registry.list()):
            self.unregister_layer(layer_id)
        self.metrics.clear()
        self.engine.close()
        self.logger.info("Tile service stopped")

    def __enter__(self) -> "TileServiceContext":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def register_layer(self, layer_id: str, config: LayerConfig) -> LayerConfig:
        """Register a layer and attach a spatial index when indexing is on."""
        self.registry.register(layer_id, config)
        if self.index_manager.enabled:
            self.index_manager.attach(config)
        return config

    def unregister_layer(self, layer_id: str) -> Optional[LayerConfig]:
        """Remove a layer; its attached index is released by the registry."""
        return self.registry.unregister(layer_id)

    def next_layer_id(self) -> str:
        with self._counter_lock:
            return f"{LAYER_ID_PREFIX}-{next(self._layer_counter)}"

    def add_layer(
        self,
        table_name: str,
        geometry_column: Optional[str] = None,
        property_columns: Iterable[str] = (),
        schema: Optional[str] = None,
        encoder: Optional[str] = None,
        layer_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Register a table as a layer, detecting its geometry column if needed.

        Returns:
            The layer id, or None if no geometry column could be found
        """
        if geometry_column is None:
            detected = detect_geometry_columns(self.engine, table_name, schema)
            if not detected:
                self.logger.error("No geometry column found", table=table_name)
                return None
            geometry_column = detected[0]

        layer_id = layer_id or self.next_layer_id()
        self.register_layer(layer_id, LayerConfig(
            table_name=table_name,
            geometry_column=geometry_column,
            property_columns=list(property_columns),
            schema=schema,
            encoder=encoder
        ))
        return layer_id

    def set_index_enabled(self, enabled: bool) -> None:
        """Toggle spatial indexing for every registered layer."""
        self.index_manager.set_global_enabled(enabled, self.registry.list().values())

    def set_default_encoder(self, name: str) -> None:
        """Switch the encoder used by layers without a pinned one."""
        self.protocol.default_encoder = name
        self.logger.info("Default encoder changed", encoder=name)

    def register_layers(self, definitions: List[Dict[str, Any]]) -> List[str]:
        """Register layers from plain dictionaries (as found in a layers file)."""
        layer_ids = []
        for definition in definitions:
            try:
                layer_id = self.add_layer(
                    table_name=definition["table_name"],
                    geometry_column=definition.get("geometry_column"),
                    property_columns=definition.get("property_columns") or (),
                    schema=definition.get("schema"),
                    encoder=definition.get("encoder"),
                    layer_id=definition.get("id")
                )
            except (KeyError, ValueError) as e:
                self.logger.error("Invalid layer definition", definition=definition, error=str(e))
                continue
            if layer_id:
                layer_ids.append(layer_id)
        return layer_ids

    async def load_layers_file(self, path: Union[str, Path]) -> List[str]:
        """Register the layers listed in a JSON file."""
        path = Path(path)
        if not path.exists():
            self.logger.info("No layers file found", path=str(path))
            return []

        try:
            async with aiofiles.open(path, 'r') as f:
                content = await f.read()
            definitions = json.loads(content)
        except (OSError, ValueError) as e:
            self.logger.error("Failed to load layers file", path=str(path), error=str(e))
            return []

        if isinstance(definitions, dict):
            definitions = definitions.get("layers", [])

        layer_ids = self.register_layers(definitions)
        self.logger.info("Loaded layers file", path=str(path), layers=len(layer_ids))
        return layer_ids
