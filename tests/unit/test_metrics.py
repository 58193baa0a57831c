"""
Unit Tests for Tile Metrics Collection
"""

import threading
import unittest

from duckdb_tiles.monitoring.metrics import MetricsCollector, TileMetric


def make_metric(i, total=10.0, fetch=4.0, convert=2.0, tag="[Native]", size=100):
    return TileMetric(
        tile_id=f"{tag} 10/{i}/403",
        fetch_time_ms=fetch,
        convert_time_ms=convert,
        total_time_ms=total,
        feature_count=-1,
        tile_size_bytes=size
    )


class TestTileMetric(unittest.TestCase):

    def test_strategy_from_tag(self):
        self.assertEqual(make_metric(0).strategy, "native")
        self.assertEqual(make_metric(0, tag="[GeoJSON]").strategy, "geojson")

    def test_strategy_without_tag(self):
        metric = TileMetric("10/0/0", 1.0, 1.0, 2.0, 0, 0)
        self.assertEqual(metric.strategy, "unknown")

    def test_to_dict(self):
        data = make_metric(3).to_dict()

        self.assertEqual(data["tile_id"], "[Native] 10/3/403")
        self.assertIn("timestamp_ms", data)


class TestMetricsCollector(unittest.TestCase):
    """Test suite for the bounded metrics history."""

    def setUp(self):
        self.collector = MetricsCollector(capacity=100)

    def test_empty_averages(self):
        averages = self.collector.get_averages()

        self.assertEqual(averages["avg_total"], 0.0)
        self.assertEqual(averages["total_tiles"], 0)

    def test_capacity_evicts_oldest(self):
        for i in range(150):
            self.collector.add_metric(make_metric(i))

        metrics = self.collector.get_metrics()
        self.assertEqual(len(metrics), 100)
        self.assertEqual(metrics[0].tile_id, "[Native] 10/50/403")
        self.assertEqual(metrics[-1].tile_id, "[Native] 10/149/403")
        self.assertEqual(
            [m.tile_id for m in metrics],
            [f"[Native] 10/{i}/403" for i in range(50, 150)]
        )

    def test_averages(self):
        self.collector.add_metric(make_metric(0, total=10.0, fetch=4.0, convert=2.0))
        self.collector.add_metric(make_metric(1, total=30.0, fetch=8.0, convert=6.0))

        averages = self.collector.get_averages()
        self.assertAlmostEqual(averages["avg_total"], 20.0)
        self.assertAlmostEqual(averages["avg_fetch"], 6.0)
        self.assertAlmostEqual(averages["avg_convert"], 4.0)
        self.assertEqual(averages["total_tiles"], 2)

    def test_averages_over_retained_only(self):
        for i in range(50):
            self.collector.add_metric(make_metric(i, total=1000.0))
        for i in range(100):
            self.collector.add_metric(make_metric(i, total=10.0))

        self.assertAlmostEqual(self.collector.get_averages()["avg_total"], 10.0)

    def test_recent_newest_first(self):
        for i in range(5):
            self.collector.add_metric(make_metric(i))

        recent = self.collector.get_recent(limit=2)
        self.assertEqual([m.tile_id for m in recent], ["[Native] 10/4/403", "[Native] 10/3/403"])
        self.assertEqual(self.collector.get_recent(limit=0), [])

    def test_clear(self):
        self.collector.add_metric(make_metric(0))
        self.collector.clear()

        self.assertEqual(len(self.collector), 0)

    def test_concurrent_appends(self):
        def add_many():
            for i in range(100):
                self.collector.add_metric(make_metric(i))

        threads = [threading.Thread(target=add_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(self.collector), 100)

    def test_prometheus_export(self):
        self.collector.add_metric(make_metric(0))
        self.collector.add_metric(make_metric(1, tag="[GeoJSON]", size=0))

        registry = self.collector.prometheus_registry
        self.assertEqual(
            registry.get_sample_value("tiles_served_total", {"strategy": "native", "status": "ok"}),
            1.0
        )
        self.assertEqual(
            registry.get_sample_value("tiles_served_total", {"strategy": "geojson", "status": "empty"}),
            1.0
        )
        self.assertEqual(
            registry.get_sample_value("tile_size_bytes_count", {"strategy": "native"}),
            1.0
        )

        payload = self.collector.export_prometheus().decode("utf-8")
        self.assertIn("tile_generation_duration_seconds", payload)

    def test_independent_registries(self):
        other = MetricsCollector(capacity=10)
        self.collector.add_metric(make_metric(0))

        self.assertEqual(len(other), 0)
        self.assertNotIn('strategy="native"', other.export_prometheus().decode("utf-8"))

    def test_prometheus_disabled(self):
        collector = MetricsCollector(capacity=10, enable_prometheus=False)
        collector.add_metric(make_metric(0))

        self.assertIsNone(collector.export_prometheus())
        self.assertEqual(len(collector), 1)


if __name__ == '__main__':
    unittest.main()
