"""Statistics models."""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MeshHealthStatus(str, Enum):
    """Overall mesh health."""
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DISCONNECTED = "disconnected"


class MeshHealthScore(BaseModel):
    """Mesh health derived from neighbor and route tables."""
    connectivity: int = Field(..., ge=0, le=100)
    quality: int = Field(..., ge=0, le=100)
    redundancy: int = Field(..., ge=0, le=100)
    status: MeshHealthStatus


class StatsSnapshot(BaseModel):
    """One aggregated reading."""
    system: Dict[str, Any] = Field(default_factory=dict)
    network: Dict[str, Any] = Field(default_factory=dict)
    mesh: Dict[str, Any] = Field(default_factory=dict)
    overlay: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)

    def cpu_usage(self) -> float:
        return float(self.system.get("cpu", {}).get("usage", 0) or 0)

    def memory_usage(self) -> float:
        return float(self.system.get("memory", {}).get("usage", 0) or 0)

    def neighbor_count(self) -> int:
        return int(self.mesh.get("metrics", {}).get("neighborCount", 0) or 0)


class SeriesSummary(BaseModel):
    """current/average/min/max of one metric series."""
    current: float
    average: float
    min: float
    max: float


class PerformanceWindow(BaseModel):
    """Performance trends over a trailing window of history."""
    model_config = ConfigDict(populate_by_name=True)

    cpu: SeriesSummary
    memory: SeriesSummary
    neighbors: SeriesSummary
    data_points: int = Field(..., alias="dataPoints")
    start: Optional[float] = None
    end: Optional[float] = None
