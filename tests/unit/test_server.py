"""
Unit Tests for the Tile Server API

The app is driven through FastAPI's TestClient without running the startup
hook, so no database is opened; the engine is a mock.
"""

import unittest
from unittest.mock import Mock, patch

from fastapi.testclient import TestClient

from duckdb_tiles.context import TileServiceContext
from duckdb_tiles.monitoring.metrics import TileMetric
from duckdb_tiles.server import create_app
from duckdb_tiles.utils.config import Config


class TestTileServerAPI(unittest.TestCase):
    """Test suite for the HTTP endpoints."""

    def setUp(self):
        self.engine = Mock()
        self.engine.is_connected = True
        self.engine.spatial_available = True

        self.context = TileServiceContext(Config(), engine=self.engine)
        self.client = TestClient(create_app(self.context))

    def test_root(self):
        response = self.client.get("/")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["encoders"], ["geojson", "native"])
        self.assertEqual(data["default_encoder"], "native")
        self.assertEqual(data["source_layer"], "v")

    def test_health(self):
        data = self.client.get("/health").json()

        self.assertEqual(data["status"], "healthy")
        self.assertTrue(data["spatial_extension"])
        self.assertEqual(data["layers"], 0)

    def test_health_degraded(self):
        self.engine.is_connected = False
        self.assertEqual(self.client.get("/health").json()["status"], "degraded")

    def test_get_tile(self):
        self.context.add_layer("places", geometry_column="geom")

        with patch.object(self.context.protocol, "fetch_url", return_value=b"\x1a\x00") as mock_fetch:
            response = self.client.get("/tiles/duckdb-layer-0/10/909/403.pbf")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/x-protobuf")
        self.assertEqual(response.content, b"\x1a\x00")
        mock_fetch.assert_called_once_with("duckdb://duckdb-layer-0/10/909/403.pbf")

    def test_get_tile_unknown_layer_is_empty(self):
        response = self.client.get("/tiles/duckdb-layer-7/10/909/403.pbf")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"")

    def test_get_tile_bad_format_is_empty(self):
        self.context.add_layer("places", geometry_column="geom")
        response = self.client.get("/tiles/duckdb-layer-0/10/909/403.png")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"")

    @patch("duckdb_tiles.server.get_geometry_type", return_value="point")
    def test_create_and_list_layers(self, mock_geometry_type):
        response = self.client.post("/layers", json={
            "table_name": "places",
            "geometry_column": "geom",
            "property_columns": ["name", "population"]
        })

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data["id"], "duckdb-layer-0")
        self.assertEqual(data["tiles"], "duckdb://duckdb-layer-0/{z}/{x}/{y}.pbf")
        self.assertEqual(data["geometry_type"], "point")
        mock_geometry_type.assert_called_once_with(self.engine, self.context.registry.get("duckdb-layer-0"))

        layers = self.client.get("/layers").json()["layers"]
        self.assertEqual(layers["duckdb-layer-0"]["property_columns"], ["name", "population"])

    def test_create_layer_unknown_encoder(self):
        response = self.client.post("/layers", json={
            "table_name": "places", "geometry_column": "geom", "encoder": "raster"
        })
        self.assertEqual(response.status_code, 400)

    @patch("duckdb_tiles.context.detect_geometry_columns", return_value=[])
    def test_create_layer_without_geometry(self, mock_detect):
        response = self.client.post("/layers", json={"table_name": "plain"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(len(self.context.registry), 0)

    def test_delete_layer(self):
        self.context.add_layer("places", geometry_column="geom")

        self.assertEqual(self.client.delete("/layers/duckdb-layer-0").status_code, 200)
        self.assertEqual(self.client.delete("/layers/duckdb-layer-0").status_code, 404)

    @patch("duckdb_tiles.server.get_layer_extent", return_value=(139.0, 35.0, 140.0, 36.0))
    def test_layer_extent(self, mock_extent):
        self.context.add_layer("places", geometry_column="geom")

        data = self.client.get("/layers/duckdb-layer-0/extent").json()
        self.assertEqual(data["bbox"], [139.0, 35.0, 140.0, 36.0])
        self.assertEqual(self.client.get("/layers/missing/extent").status_code, 404)

    @patch("duckdb_tiles.server.get_table_columns", return_value=["id", "name", "geom"])
    def test_table_columns(self, mock_columns):
        data = self.client.get("/tables/places/columns").json()

        self.assertEqual(data["columns"], ["id", "name", "geom"])
        mock_columns.assert_called_once_with(self.engine, "places")

    def test_bounds(self):
        data = self.client.get("/bounds/0/0/0").json()

        self.assertAlmostEqual(data["bounds"]["west"], -180.0)
        self.assertAlmostEqual(data["bounds"]["east"], 180.0)
        self.assertEqual(self.client.get("/bounds/30/0/0").status_code, 400)

    def test_bounds_outside_grid(self):
        for path in ("/bounds/0/0/1000", "/bounds/2/7/1", "/bounds/2/1/4"):
            response = self.client.get(path)

            self.assertEqual(response.status_code, 400, path)
            self.assertIn("outside the tile grid", response.json()["detail"])

    def test_bounds_stay_in_world(self):
        data = self.client.get("/bounds/2/3/0").json()["bounds"]

        self.assertAlmostEqual(data["east"], 180.0)
        self.assertLess(data["north"], 85.06)

    def test_metrics(self):
        self.context.metrics.add_metric(TileMetric("[Native] 10/909/403", 4.0, 0.0, 5.0, -1, 120))
        self.context.metrics.add_metric(TileMetric("[GeoJSON] 10/909/403", 6.0, 3.0, 11.0, 1, 80))

        data = self.client.get("/metrics?limit=1").json()
        self.assertEqual(data["averages"]["total_tiles"], 2)
        self.assertAlmostEqual(data["averages"]["avg_total"], 8.0)
        self.assertEqual([m["tile_id"] for m in data["recent"]], ["[GeoJSON] 10/909/403"])

        self.assertEqual(self.client.delete("/metrics").status_code, 200)
        self.assertEqual(len(self.context.metrics), 0)

    def test_prometheus_metrics(self):
        response = self.client.get("/metrics/prometheus")

        self.assertEqual(response.status_code, 200)
        self.assertIn("tiles_served_total", response.text)

    def test_settings_encoder(self):
        response = self.client.put("/settings/encoder", json={"encoder": "geojson"})

        self.assertEqual(response.json()["encoder"], "geojson")
        self.assertEqual(self.context.protocol.default_encoder, "geojson")
        self.assertEqual(
            self.client.put("/settings/encoder", json={"encoder": "png"}).status_code,
            400
        )

    def test_settings_index(self):
        self.context.add_layer("places", geometry_column="geom")

        with patch.object(self.context.index_manager, "ensure_index", return_value="idx_places_geom"):
            data = self.client.put("/settings/index", json={"enabled": True}).json()

        self.assertTrue(data["enabled"])
        self.assertEqual(data["indexes"], {"duckdb-layer-0": "idx_places_geom"})


if __name__ == '__main__':
    unittest.main()
