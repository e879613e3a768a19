"""Mesh health scoring."""

import re
from typing import Any, Dict, Iterable, List

from ..models import MeshHealthScore, MeshHealthStatus


MAX_EXPECTED_NEIGHBORS = 10
REDUNDANCY_SCALE = 20

_QUALITY_PATTERN = re.compile(r"(\d+(?:\.\d+)?)")


def parse_quality(value: Any) -> float:
    """
    Parse a link quality indicator.

    Accepts numbers and strings such as ``"0.90"`` or ``"(0.87)"``.
    Anything unparseable yields 0.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)

    match = _QUALITY_PATTERN.search(str(value))
    return float(match.group(1)) if match else 0.0


def average_quality(neighbors: Iterable[Dict[str, Any]]) -> float:
    """Mean parsed quality over neighbors, 0 when there are none."""
    qualities = [parse_quality(n.get("quality")) for n in neighbors]
    if not qualities:
        return 0.0
    return sum(qualities) / len(qualities)


def mesh_health(
    neighbors: List[Dict[str, Any]],
    routes: List[Dict[str, Any]]
) -> MeshHealthScore:
    """
    Score mesh health from the neighbor and route tables.

    Deterministic: the same tables always give the same score.

    Args:
        neighbors: Direct mesh neighbors
        routes: Originator/route entries

    Returns:
        MeshHealthScore
    """
    if not neighbors:
        return MeshHealthScore(
            connectivity=0,
            quality=0,
            redundancy=0,
            status=MeshHealthStatus.DISCONNECTED
        )

    avg_quality = average_quality(neighbors)
    connectivity = min(len(neighbors) / MAX_EXPECTED_NEIGHBORS, 1) * 100

    redundancy = 0.0
    if routes:
        destinations = {r.get("originator", r.get("destination")) for r in routes}
        redundancy = min(len(routes) / len(destinations) * REDUNDANCY_SCALE, 100)

    if avg_quality < 0.5 or connectivity < 30:
        status = MeshHealthStatus.POOR
    elif avg_quality < 0.8 or connectivity < 60:
        status = MeshHealthStatus.FAIR
    else:
        status = MeshHealthStatus.GOOD

    return MeshHealthScore(
        connectivity=round(connectivity),
        quality=min(round(avg_quality * 100), 100),
        redundancy=round(redundancy),
        status=status
    )
