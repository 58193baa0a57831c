"""
Service Configuration

Nested configuration sections for the tile service. Values come from
environment variables so the same build runs locally, in a container, or
under a process manager without code changes.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    """Data engine settings."""
    path: str = ":memory:"
    spatial_extension: str = "spatial"
    read_only: bool = False


@dataclass
class TileConfig:
    """Tile encoding settings shared by both encoders."""
    extent: int = 4096
    buffer: int = 256  # Native encoder buffer in tile units
    max_features: int = 10000
    source_layer: str = "v"
    url_scheme: str = "duckdb"
    max_zoom: int = 22
    default_encoder: str = "native"


@dataclass
class IndexConfig:
    """Spatial index settings."""
    enabled: bool = False


@dataclass
class MetricsConfig:
    """Tile metrics history settings."""
    capacity: int = 100


@dataclass
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 8000
    layers_file: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    json_logs: bool = True


@dataclass
class Config:
    """Top-level configuration for the tile service."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    tiles: TileConfig = field(default_factory=TileConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """
        Build configuration from environment variables.

        Returns:
            Config populated from ``DUCKDB_TILES_*`` variables, falling back
            to defaults for anything unset
        """
        return cls(
            database=DatabaseConfig(
                path=os.getenv("DUCKDB_TILES_DATABASE", ":memory:"),
                spatial_extension=os.getenv("DUCKDB_TILES_SPATIAL_EXTENSION", "spatial"),
                read_only=_env_bool("DUCKDB_TILES_READ_ONLY", False),
            ),
            tiles=TileConfig(
                extent=int(os.getenv("DUCKDB_TILES_EXTENT", "4096")),
                buffer=int(os.getenv("DUCKDB_TILES_BUFFER", "256")),
                max_features=int(os.getenv("DUCKDB_TILES_MAX_FEATURES", "10000")),
                source_layer=os.getenv("DUCKDB_TILES_SOURCE_LAYER", "v"),
                url_scheme=os.getenv("DUCKDB_TILES_SCHEME", "duckdb"),
                max_zoom=int(os.getenv("DUCKDB_TILES_MAX_ZOOM", "22")),
                default_encoder=os.getenv("DUCKDB_TILES_ENCODER", "native"),
            ),
            index=IndexConfig(
                enabled=_env_bool("DUCKDB_TILES_SPATIAL_INDEX", False),
            ),
            metrics=MetricsConfig(
                capacity=int(os.getenv("DUCKDB_TILES_METRICS_CAPACITY", "100")),
            ),
            server=ServerConfig(
                host=os.getenv("HOST", "0.0.0.0"),
                port=int(os.getenv("PORT", "8000")),
                layers_file=os.getenv("DUCKDB_TILES_LAYERS_FILE"),
            ),
            logging=LoggingConfig(
                level=os.getenv("LOG_LEVEL", "INFO"),
                json_logs=_env_bool("DUCKDB_TILES_JSON_LOGS", True),
            ),
        )
