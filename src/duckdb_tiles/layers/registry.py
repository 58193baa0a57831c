"""
Layer Configuration Registry

Maps layer ids to the table/geometry/property description the tile pipeline
queries. This is the single source of truth the protocol handler consults
on every tile request.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import structlog


@dataclass
class LayerConfig:
    """Configuration for a tile layer backed by a DuckDB table."""
    table_name: str
    geometry_column: str
    property_columns: List[str] = field(default_factory=list)
    schema: Optional[str] = None
    index_name: Optional[str] = None
    encoder: Optional[str] = None  # Pinned encoder; None follows the global mode

    def __post_init__(self):
        if not self.table_name or not self.geometry_column:
            raise ValueError("Layer config needs a table name and a geometry column")

        # Ordered, unique, and never the geometry column itself
        seen = set()
        columns = []
        for column in self.property_columns or []:
            if column == self.geometry_column or column in seen:
                continue
            seen.add(column)
            columns.append(column)
        self.property_columns = columns

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LayerConfig":
        return cls(
            table_name=data["table_name"],
            geometry_column=data["geometry_column"],
            property_columns=list(data.get("property_columns") or []),
            schema=data.get("schema"),
            encoder=data.get("encoder"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "geometry_column": self.geometry_column,
            "property_columns": list(self.property_columns),
            "schema": self.schema,
            "index_name": self.index_name,
            "encoder": self.encoder,
        }


class IndexReleaser(Protocol):
    def release(self, config: LayerConfig) -> None:
        ...


class LayerRegistry:
    """
    Thread-safe registry of active layer configurations.

    Reads vastly outnumber writes: every tile request performs a ``get``
    while writes only happen when a layer is added or removed.
    """

    def __init__(self, index_manager: Optional[IndexReleaser] = None):
        """
        Initialize the registry.

        Args:
            index_manager: Released an attached spatial index whenever a
                layer is unregistered
        """
        self.index_manager = index_manager
        self.logger = structlog.get_logger(component="LayerRegistry")

        self._layers: Dict[str, LayerConfig] = {}
        self._lock = threading.RLock()

    def register(self, layer_id: str, config: LayerConfig) -> None:
        """
        Register (or replace) the configuration for ``layer_id``.

        A replaced configuration gives up its spatial index.
        """
        with self._lock:
            previous = self._layers.get(layer_id)
            self._layers[layer_id] = config

        if previous is not None and previous is not config:
            self._release_index(previous)

        self.logger.info(
            "Registered layer",
            layer_id=layer_id,
            table=config.table_name,
            geometry_column=config.geometry_column
        )

    def unregister(self, layer_id: str) -> Optional[LayerConfig]:
        """
        Remove a layer and release its spatial index.

        Returns:
            The removed config, or None if the layer was not registered
        """
        with self._lock:
            config = self._layers.pop(layer_id, None)

        if config is None:
            self.logger.warning("Unregister for unknown layer", layer_id=layer_id)
            return None

        self._release_index(config)

        self.logger.info("Unregistered layer", layer_id=layer_id)
        return config

    def _release_index(self, config: LayerConfig) -> None:
        if not config.index_name:
            return
        if self.index_manager is not None:
            self.index_manager.release(config)
        config.index_name = None

    def get(self, layer_id: str) -> Optional[LayerConfig]:
        with self._lock:
            return self._layers.get(layer_id)

    def list(self) -> Dict[str, LayerConfig]:
        """Snapshot of all registered layers."""
        with self._lock:
            return dict(self._layers)

    def __contains__(self, layer_id: str) -> bool:
        with self._lock:
            return layer_id in self._layers

    def __len__(self) -> int:
        with self._lock:
            return len(self._layers)
