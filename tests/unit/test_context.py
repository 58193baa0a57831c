"""
Unit Tests for the Tile Service Context
"""

import asyncio
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from duckdb_tiles.context import TileServiceContext
from duckdb_tiles.monitoring.metrics import TileMetric
from duckdb_tiles.utils.config import Config, IndexConfig


class TestTileServiceContext(unittest.TestCase):
    """Test suite for layer hooks and settings on the context."""

    def setUp(self):
        self.engine = Mock()
        self.context = TileServiceContext(Config(), engine=self.engine)

        self.temp_dir = tempfile.mkdtemp()
        self.temp_path = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_wiring(self):
        self.assertEqual(sorted(self.context.encoders), ["geojson", "native"])
        self.assertEqual(self.context.protocol.default_encoder, "native")
        self.assertIs(self.context.protocol.registry, self.context.registry)
        self.assertIs(self.context.registry.index_manager, self.context.index_manager)
        self.assertFalse(self.context.index_manager.enabled)

    def test_independent_instances(self):
        other = TileServiceContext(Config(), engine=Mock())
        self.context.add_layer("places", geometry_column="geom")

        self.assertEqual(len(other.registry), 0)
        self.assertIsNot(other.metrics, self.context.metrics)

    def test_layer_ids_are_sequential(self):
        first = self.context.add_layer("places", geometry_column="geom")
        second = self.context.add_layer("roads", geometry_column="geom")

        self.assertEqual(first, "duckdb-layer-0")
        self.assertEqual(second, "duckdb-layer-1")

    def test_add_layer_with_explicit_id(self):
        layer_id = self.context.add_layer(
            "places", geometry_column="geom", property_columns=["name"], layer_id="cities"
        )

        self.assertEqual(layer_id, "cities")
        self.assertEqual(self.context.registry.get("cities").property_columns, ["name"])

    @patch("duckdb_tiles.context.detect_geometry_columns", return_value=["shape", "centroid"])
    def test_add_layer_detects_geometry(self, mock_detect):
        layer_id = self.context.add_layer("places")

        mock_detect.assert_called_once_with(self.engine, "places", None)
        self.assertEqual(self.context.registry.get(layer_id).geometry_column, "shape")

    @patch("duckdb_tiles.context.detect_geometry_columns", return_value=[])
    def test_add_layer_without_geometry(self, mock_detect):
        self.assertIsNone(self.context.add_layer("plain_table"))
        self.assertEqual(len(self.context.registry), 0)

    def test_register_attaches_index_when_enabled(self):
        context = TileServiceContext(Config(index=IndexConfig(enabled=True)), engine=Mock())
        context.index_manager = Mock(enabled=True)

        context.add_layer("places", geometry_column="geom")

        context.index_manager.attach.assert_called_once()

    def test_register_skips_index_when_disabled(self):
        self.context.index_manager = Mock(enabled=False)
        self.context.add_layer("places", geometry_column="geom")

        self.context.index_manager.attach.assert_not_called()

    def test_set_index_enabled(self):
        self.context.add_layer("places", geometry_column="geom")
        self.context.index_manager = Mock()

        self.context.set_index_enabled(True)

        enabled, layers = self.context.index_manager.set_global_enabled.call_args[0]
        self.assertTrue(enabled)
        self.assertEqual([layer.table_name for layer in layers], ["places"])

    def test_set_default_encoder(self):
        self.context.set_default_encoder("geojson")
        self.assertEqual(self.context.protocol.default_encoder, "geojson")

        with self.assertRaises(ValueError):
            self.context.set_default_encoder("png")

    def test_register_layers(self):
        layer_ids = self.context.register_layers([
            {"table_name": "places", "geometry_column": "geom", "id": "cities"},
            {"geometry_column": "geom"},
            {"table_name": "roads", "geometry_column": "geom", "encoder": "geojson"},
        ])

        self.assertEqual(layer_ids, ["cities", "duckdb-layer-0"])
        self.assertEqual(self.context.registry.get("duckdb-layer-0").encoder, "geojson")

    def test_load_layers_file(self):
        layers_file = self.temp_path / "layers.json"
        layers_file.write_text(json.dumps({
            "layers": [{"table_name": "places", "geometry_column": "geom", "property_columns": ["name"]}]
        }))

        layer_ids = asyncio.run(self.context.load_layers_file(layers_file))

        self.assertEqual(layer_ids, ["duckdb-layer-0"])
        self.assertEqual(self.context.registry.get("duckdb-layer-0").property_columns, ["name"])

    def test_load_layers_file_missing(self):
        layer_ids = asyncio.run(self.context.load_layers_file(self.temp_path / "missing.json"))
        self.assertEqual(layer_ids, [])

    def test_load_layers_file_invalid_json(self):
        layers_file = self.temp_path / "layers.json"
        layers_file.write_text("{not json")

        self.assertEqual(asyncio.run(self.context.load_layers_file(layers_file)), [])

    def test_close_unregisters_layers(self):
        self.context.add_layer("places", geometry_column="geom")
        self.context.metrics.add_metric(TileMetric("[Native] 0/0/0", 1.0, 1.0, 2.0, -1, 10))

        self.context.close()

        self.assertEqual(len(self.context.registry), 0)
        self.assertEqual(len(self.context.metrics), 0)
        self.engine.close.assert_called_once()

    def test_context_manager(self):
        with self.context as ctx:
            self.assertIs(ctx, self.context)
            self.engine.connect.assert_called_once()
        self.engine.close.assert_called_once()


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        config = Config()

        self.assertEqual(config.database.path, ":memory:")
        self.assertEqual(config.tiles.extent, 4096)
        self.assertEqual(config.tiles.source_layer, "v")
        self.assertEqual(config.metrics.capacity, 100)
        self.assertFalse(config.index.enabled)

    def test_from_env(self):
        env = {
            "DUCKDB_TILES_DATABASE": "/data/tiles.duckdb",
            "DUCKDB_TILES_ENCODER": "geojson",
            "DUCKDB_TILES_SPATIAL_INDEX": "true",
            "DUCKDB_TILES_MAX_FEATURES": "2500",
            "DUCKDB_TILES_METRICS_CAPACITY": "20",
            "PORT": "9000",
            "DUCKDB_TILES_JSON_LOGS": "no",
        }
        with patch.dict(os.environ, env, clear=False):
            config = Config.from_env()

        self.assertEqual(config.database.path, "/data/tiles.duckdb")
        self.assertEqual(config.tiles.default_encoder, "geojson")
        self.assertTrue(config.index.enabled)
        self.assertEqual(config.tiles.max_features, 2500)
        self.assertEqual(config.metrics.capacity, 20)
        self.assertEqual(config.server.port, 9000)
        self.assertFalse(config.logging.json_logs)


if __name__ == '__main__':
    unittest.main()
