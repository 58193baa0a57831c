"""
Tile Metrics Collection

Bounded, append-only history of per-tile timing and size records with
rolling averages, mirrored into a Prometheus registry for scraping.

Appends from concurrent requests land in completion order; no ordering by
request issue time is attempted.
"""

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


@dataclass
class TileMetric:
    """Timing and size record for one served tile."""
    tile_id: str  # Strategy tag + z/x/y, e.g. "[Native] 10/909/403"
    fetch_time_ms: float
    convert_time_ms: float
    total_time_ms: float
    feature_count: int  # -1 if unknown
    tile_size_bytes: int
    timestamp_ms: float = field(default_factory=lambda: time.time() * 1000.0)

    @property
    def strategy(self) -> str:
        if self.tile_id.startswith("["):
            return self.tile_id[1:self.tile_id.find("]")].lower()
        return "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MetricsCollector:
    """
    Per-tile metrics history for the tile service.

    Keeps the most recent ``capacity`` records (oldest evicted first) and
    exposes averages over what is retained.
    """

    def __init__(self, capacity: int = 100, enable_prometheus: bool = True):
        """
        Initialize the metrics collector.

        Args:
            capacity: Maximum number of tile records retained
            enable_prometheus: Mirror records into a Prometheus registry
        """
        self.capacity = capacity
        self.enable_prometheus = enable_prometheus

        # Set up logging
        self.logger = structlog.get_logger(collector_type="MetricsCollector")

        self._metrics: deque = deque(maxlen=capacity)

        # Thread safety
        self.lock = threading.RLock()

        if self.enable_prometheus:
            self._init_prometheus()

    def _init_prometheus(self) -> None:
        """Initialize Prometheus metrics."""
        try:
            self.prometheus_registry = CollectorRegistry()

            self.tiles_served = Counter(
                'tiles_served_total',
                'Total number of tiles served',
                ['strategy', 'status'],
                registry=self.prometheus_registry
            )
            self.tile_duration = Histogram(
                'tile_generation_duration_seconds',
                'Duration of tile generation operations',
                ['strategy'],
                registry=self.prometheus_registry
            )
            self.tile_size = Histogram(
                'tile_size_bytes',
                'Size of generated tiles',
                ['strategy'],
                buckets=(0, 256, 1024, 4096, 16384, 65536, 262144, 1048576),
                registry=self.prometheus_registry
            )

        except ValueError as e:
            self.logger.error("Failed to initialize Prometheus metrics", error=str(e))
            self.enable_prometheus = False

    def add_metric(self, metric: TileMetric) -> None:
        """Append a tile record, evicting the oldest beyond capacity."""
        with self.lock:
            self._metrics.append(metric)

        if self.enable_prometheus:
            strategy = metric.strategy
            status = "empty" if metric.tile_size_bytes == 0 else "ok"
            self.tiles_served.labels(strategy=strategy, status=status).inc()
            self.tile_duration.labels(strategy=strategy).observe(metric.total_time_ms / 1000.0)
            self.tile_size.labels(strategy=strategy).observe(metric.tile_size_bytes)

        self.logger.debug(
            "Tile metric recorded",
            tile_id=metric.tile_id,
            total_time_ms=round(metric.total_time_ms, 2),
            tile_size=metric.tile_size_bytes
        )

    def get_averages(self) -> Dict[str, float]:
        """Average total/fetch/convert time over retained records."""
        with self.lock:
            metrics = list(self._metrics)

        if not metrics:
            return {'avg_total': 0.0, 'avg_fetch': 0.0, 'avg_convert': 0.0, 'total_tiles': 0}

        count = len(metrics)
        return {
            'avg_total': sum(m.total_time_ms for m in metrics) / count,
            'avg_fetch': sum(m.fetch_time_ms for m in metrics) / count,
            'avg_convert': sum(m.convert_time_ms for m in metrics) / count,
            'total_tiles': count
        }

    def get_metrics(self) -> List[TileMetric]:
        """All retained records, oldest first."""
        with self.lock:
            return list(self._metrics)

    def get_recent(self, limit: int = 10) -> List[TileMetric]:
        """The most recent records, newest first."""
        with self.lock:
            metrics = list(self._metrics)
        return list(reversed(metrics[-limit:])) if limit > 0 else []

    def clear(self) -> None:
        with self.lock:
            self._metrics.clear()

    def export_prometheus(self) -> Optional[bytes]:
        """Prometheus text exposition of this collector's registry."""
        if not self.enable_prometheus:
            return None
        return generate_latest(self.prometheus_registry)

    def __len__(self) -> int:
        with self.lock:
            return len(self._metrics)
