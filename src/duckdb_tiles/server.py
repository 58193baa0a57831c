#!/usr/bin/env python3
"""
DuckDB Vector Tile Server

A FastAPI-based tile server that renders Mapbox Vector Tiles on the fly from
DuckDB tables, plus the layer, index and metrics endpoints the map client
drives.
"""

from typing import List, Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .context import TileServiceContext
from .database.catalog import get_geometry_type, get_layer_extent, get_table_columns
from .exceptions import TileParseError
from .utils.config import Config
from .utils.logging_config import configure_logging
from .utils.spatial_utils import TileCoordinate, tile_to_bounds

logger = structlog.get_logger()

MVT_MEDIA_TYPE = "application/x-protobuf"


class LayerCreate(BaseModel):
    table_name: str
    geometry_column: Optional[str] = None
    property_columns: List[str] = []
    schema_name: Optional[str] = None
    encoder: Optional[str] = None
    id: Optional[str] = None


class IndexSetting(BaseModel):
    enabled: bool


class EncoderSetting(BaseModel):
    encoder: str


def create_app(context: Optional[TileServiceContext] = None) -> FastAPI:
    """
    Create the FastAPI application around a tile service context.

    Args:
        context: Service context; one is built from the environment when
            omitted
    """
    if context is None:
        context = TileServiceContext(Config.from_env())
    config = context.config

    app = FastAPI(
        title="DuckDB Vector Tile Server",
        description="On-the-fly vector tiles from DuckDB tables",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.context = context

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        """Initialize the tile server."""
        logger.info("Starting DuckDB tile server", database=config.database.path, port=config.server.port)
        context.start()

        if config.server.layers_file:
            await context.load_layers_file(config.server.layers_file)

        logger.info("Tile server initialized successfully", layers=len(context.registry))

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown."""
        logger.info("Shutting down DuckDB tile server")
        context.close()

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy" if context.engine.is_connected else "degraded",
            "service": "duckdb-tile-server",
            "version": __version__,
            "spatial_extension": context.engine.spatial_available,
            "layers": len(context.registry)
        }

    @app.get("/")
    async def root():
        """Root endpoint with server information."""
        return {
            "service": "DuckDB Vector Tile Server",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "tiles": "/tiles/{layer_id}/{z}/{x}/{y}.{format}",
                "layers": "/layers",
                "metrics": "/metrics",
                "bounds": "/bounds/{z}/{x}/{y}",
                "docs": "/docs"
            },
            "supported_formats": ["pbf", "mvt"],
            "encoders": sorted(context.encoders),
            "default_encoder": context.protocol.default_encoder,
            "source_layer": config.tiles.source_layer
        }

    @app.get("/tiles/{layer_id}/{z}/{x}/{y}.{format}")
    async def get_tile(layer_id: str, z: int, x: int, y: int, format: str):
        """
        Serve a vector tile.

        Any failure (unknown layer, bad coordinate, query error) yields an
        empty body rather than an error status.
        """
        url = f"{config.tiles.url_scheme}://{layer_id}/{z}/{x}/{y}.{format}"
        data = await context.protocol.handle_url(url)

        return Response(
            content=data,
            media_type=MVT_MEDIA_TYPE,
            headers={"Access-Control-Allow-Origin": "*"}
        )

    @app.get("/layers")
    async def list_layers():
        """List registered layers."""
        return {
            "layers": {
                layer_id: layer.to_dict()
                for layer_id, layer in context.registry.list().items()
            }
        }

    @app.post("/layers", status_code=201)
    async def create_layer(layer: LayerCreate):
        """Register a DuckDB table as a tile layer."""
        if layer.encoder and layer.encoder not in context.encoders:
            raise HTTPException(status_code=400, detail=f"Unknown encoder: {layer.encoder}")

        try:
            layer_id = context.add_layer(
                table_name=layer.table_name,
                geometry_column=layer.geometry_column,
                property_columns=layer.property_columns,
                schema=layer.schema_name,
                encoder=layer.encoder,
                layer_id=layer.id
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if layer_id is None:
            raise HTTPException(status_code=400, detail="No geometry column found")

        registered = context.registry.get(layer_id)
        return {
            "id": layer_id,
            "layer": registered.to_dict(),
            "geometry_type": get_geometry_type(context.engine, registered),
            "tiles": f"{config.tiles.url_scheme}://{layer_id}/{{z}}/{{x}}/{{y}}.pbf"
        }

    @app.delete("/layers/{layer_id}")
    async def delete_layer(layer_id: str):
        """Unregister a layer and release its spatial index."""
        if context.unregister_layer(layer_id) is None:
            raise HTTPException(status_code=404, detail="Layer not found")
        return {"status": "success", "id": layer_id}

    @app.get("/layers/{layer_id}/extent")
    async def layer_extent(layer_id: str):
        """Bounding box of a layer's data."""
        layer = context.registry.get(layer_id)
        if layer is None:
            raise HTTPException(status_code=404, detail="Layer not found")

        extent = get_layer_extent(context.engine, layer)
        return {"id": layer_id, "bbox": list(extent) if extent else None}

    @app.get("/tables/{table_name}/columns")
    async def table_columns(table_name: str):
        """Columns of a table, for picking geometry/property columns."""
        return {"table": table_name, "columns": get_table_columns(context.engine, table_name)}

    @app.get("/bounds/{z}/{x}/{y}")
    async def get_tile_bounds(z: int, x: int, y: int):
        """Get geographic bounds for a tile."""
        try:
            tile = TileCoordinate.create(z, x, y, max_zoom=config.tiles.max_zoom)
        except TileParseError as e:
            raise HTTPException(status_code=400, detail=str(e))

        bounds = tile_to_bounds(tile.z, tile.x, tile.y)

        return {
            "z": z,
            "x": x,
            "y": y,
            "bounds": {
                "west": bounds.min_lng,
                "south": bounds.min_lat,
                "east": bounds.max_lng,
                "north": bounds.max_lat
            },
            "bbox": list(bounds.as_tuple())
        }

    @app.get("/metrics")
    async def get_metrics(limit: int = 10):
        """Rolling averages and the most recent tile records."""
        return {
            "averages": context.metrics.get_averages(),
            "recent": [metric.to_dict() for metric in context.metrics.get_recent(limit)]
        }

    @app.delete("/metrics")
    async def clear_metrics():
        """Clear the tile metrics history."""
        context.metrics.clear()
        return {"status": "success"}

    @app.get("/metrics/prometheus")
    async def prometheus_metrics():
        """Prometheus exposition of tile metrics."""
        payload = context.metrics.export_prometheus()
        if payload is None:
            raise HTTPException(status_code=404, detail="Prometheus metrics disabled")
        return Response(content=payload, media_type="text/plain; version=0.0.4")

    @app.put("/settings/index")
    async def set_index(setting: IndexSetting):
        """Enable or disable spatial indexing for all layers."""
        context.set_index_enabled(setting.enabled)
        return {
            "enabled": context.index_manager.enabled,
            "indexes": {
                layer_id: layer.index_name
                for layer_id, layer in context.registry.list().items()
            }
        }

    @app.put("/settings/encoder")
    async def set_encoder(setting: EncoderSetting):
        """Switch the default tile encoder."""
        try:
            context.set_default_encoder(setting.encoder)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"encoder": context.protocol.default_encoder}

    return app


def main() -> None:
    """Run the tile server."""
    config = Config.from_env()
    configure_logging(config.logging.level, config.logging.json_logs)

    app = create_app(TileServiceContext(config))

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        reload=False,
        log_level=config.logging.level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
