"""
Monitoring Module

Per-tile timing and size history with rolling averages and a Prometheus
exposition.
"""

from .metrics import MetricsCollector, TileMetric

__all__ = [
    "MetricsCollector",
    "TileMetric"
]
