"""Monitoring: stats aggregation and mesh health scoring."""

from .stats import StatsAggregator
from .health import mesh_health, parse_quality, average_quality

__all__ = [
    "StatsAggregator",
    "mesh_health",
    "parse_quality",
    "average_quality",
]
