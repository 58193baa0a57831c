"""
Database Module

DuckDB connection management, SQL quoting, table catalog lookups and
spatial index lifecycle.
"""

from .engine import DataEngine
from .spatial_index import SpatialIndexManager

__all__ = [
    "DataEngine",
    "SpatialIndexManager"
]
