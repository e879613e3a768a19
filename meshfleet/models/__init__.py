"""Data models and schemas for meshfleet."""

from .node import Node, NodeStatus, NodeAction, HeartbeatRecord, Command, CommandType
from .stats import (
    StatsSnapshot,
    MeshHealthScore,
    MeshHealthStatus,
    SeriesSummary,
    PerformanceWindow,
)

__all__ = [
    "Node",
    "NodeStatus",
    "NodeAction",
    "HeartbeatRecord",
    "Command",
    "CommandType",
    "StatsSnapshot",
    "MeshHealthScore",
    "MeshHealthStatus",
    "SeriesSummary",
    "PerformanceWindow",
]
