"""Stats aggregation with a bounded rolling history."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ..errors import ProbeFailure
from ..models import PerformanceWindow, SeriesSummary, StatsSnapshot
from ..probes import NetworkProbe, OverlayProbe
from .health import average_quality, mesh_health
from .system import collect_network_stats, collect_system_stats


logger = logging.getLogger(__name__)


class StatsAggregator:
    """
    Periodically snapshots system, network, mesh and overlay metrics.

    Every snapshot is appended to a FIFO history holding at most
    ``max_history`` entries. A failing sub-collector contributes an empty
    section instead of aborting the snapshot.
    """

    def __init__(
        self,
        network_probe: NetworkProbe,
        overlay_probe: OverlayProbe,
        max_history: int = 100,
        system_collector: Callable[[], Dict[str, Any]] = collect_system_stats,
        network_collector: Callable[[], Dict[str, Any]] = collect_network_stats,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize stats aggregator.

        Args:
            network_probe: Mesh-layer probe
            overlay_probe: Overlay-layer probe
            max_history: Maximum snapshots retained
            system_collector: Blocking host metrics collector
            network_collector: Blocking interface metrics collector
            clock: Time source
        """
        self.network_probe = network_probe
        self.overlay_probe = overlay_probe
        self.max_history = max_history
        self.system_collector = system_collector
        self.network_collector = network_collector
        self._clock = clock

        self.history: Deque[StatsSnapshot] = deque(maxlen=max_history)
        self._latest = StatsSnapshot(timestamp=clock())

    async def collect(self) -> StatsSnapshot:
        """Take one snapshot and append it to the history."""
        system, network, mesh, overlay = await asyncio.gather(
            self._isolated("system", self._collect_system),
            self._isolated("network", self._collect_network),
            self._isolated("mesh", self._collect_mesh),
            self._isolated("overlay", self._collect_overlay),
        )

        snapshot = StatsSnapshot(
            system=system,
            network=network,
            mesh=mesh,
            overlay=overlay,
            timestamp=self._clock()
        )
        self._latest = snapshot
        self.history.append(snapshot)
        return snapshot

    async def _isolated(self, source: str, collector: Callable[[], Awaitable[dict]]) -> dict:
        try:
            return await collector()
        except Exception as e:
            logger.error(str(ProbeFailure(source, e)))
            return {}

    async def _collect_system(self) -> dict:
        return await asyncio.to_thread(self.system_collector)

    async def _collect_network(self) -> dict:
        return await asyncio.to_thread(self.network_collector)

    async def _collect_mesh(self) -> dict:
        status, neighbors, routes = await asyncio.gather(
            self.network_probe.mesh_status(),
            self.network_probe.list_neighbors(),
            self.network_probe.list_routes(),
        )
        health = mesh_health(neighbors, routes)

        return {
            "status": status,
            "neighbors": neighbors,
            "routes": routes,
            "health": health.model_dump(mode="json"),
            "metrics": {
                "neighborCount": len(neighbors),
                "routeCount": len(routes),
                "avgQuality": average_quality(neighbors),
                "connectivity": health.connectivity,
            },
        }

    async def _collect_overlay(self) -> dict:
        status, networks, peers = await asyncio.gather(
            self.overlay_probe.overlay_status(),
            self.overlay_probe.list_networks(),
            self.overlay_probe.list_peers(),
        )

        return {
            "status": status,
            "networks": networks,
            "peers": peers,
            "metrics": {
                "networkCount": len(networks),
                "peerCount": len(peers),
                "onlineStatus": bool(status.get("online", False)),
                "connectedNetworks": sum(1 for n in networks if n.get("status") == "OK"),
            },
        }

    def latest(self) -> StatsSnapshot:
        """Most recent snapshot."""
        return self._latest

    def get_history(self, minutes: Optional[float] = None) -> List[StatsSnapshot]:
        """Snapshots in the trailing window, oldest first."""
        if minutes is None:
            return list(self.history)
        cutoff = self._clock() - minutes * 60
        return [s for s in self.history if s.timestamp >= cutoff]

    def performance_window(self, minutes: float = 30) -> Optional[PerformanceWindow]:
        """
        CPU, memory and neighbor-count trends over the trailing window.

        Returns:
            PerformanceWindow, or None when the window holds no samples
        """
        window = self.get_history(minutes)
        if not window:
            return None

        return PerformanceWindow(
            cpu=_summarize([s.cpu_usage() for s in window]),
            memory=_summarize([s.memory_usage() for s in window]),
            neighbors=_summarize([float(s.neighbor_count()) for s in window]),
            data_points=len(window),
            start=window[0].timestamp,
            end=window[-1].timestamp
        )

    def system_summary(self) -> dict:
        """Compact view of the latest snapshot for status pages."""
        s = self._latest
        interfaces = s.network.get("interfaces", {})
        mesh_status = s.mesh.get("status") or {}
        overlay_metrics = s.overlay.get("metrics", {})

        return {
            "timestamp": s.timestamp,
            "cpu": {
                "usage": s.cpu_usage(),
                "temperature": s.system.get("temperature", {}).get("cpu", 0),
            },
            "memory": {
                "usage": s.memory_usage(),
                "total": s.system.get("memory", {}).get("total", 0),
                "available": s.system.get("memory", {}).get("available", 0),
            },
            "network": {
                "interfaceCount": len(interfaces),
                "activeInterfaces": sum(
                    1 for i in interfaces.values() if i.get("operstate") == "up"
                ),
            },
            "mesh": {
                "active": bool(mesh_status.get("active", False)),
                "neighbors": s.neighbor_count(),
                "health": s.mesh.get("health", {}).get("status", "unknown"),
            },
            "overlay": {
                "online": overlay_metrics.get("onlineStatus", False),
                "networks": overlay_metrics.get("connectedNetworks", 0),
                "peers": overlay_metrics.get("peerCount", 0),
            },
        }

    def network_summary(self) -> dict:
        """Mesh, overlay and interface detail from the latest snapshot."""
        s = self._latest
        return {
            "mesh": {
                "interface": (s.mesh.get("status") or {}).get("interface"),
                "neighbors": s.mesh.get("neighbors", []),
                "routes": s.mesh.get("routes", []),
                "health": s.mesh.get("health", {}),
            },
            "overlay": {
                "status": s.overlay.get("status", {}),
                "networks": s.overlay.get("networks", []),
                "peers": s.overlay.get("peers", []),
            },
            "interfaces": s.network.get("interfaces", {}),
        }

    def reset(self):
        """Drop the history and the latest snapshot."""
        self.history.clear()
        self._latest = StatsSnapshot(timestamp=self._clock())


def _summarize(values: List[float]) -> SeriesSummary:
    return SeriesSummary(
        current=values[-1],
        average=sum(values) / len(values),
        min=min(values),
        max=max(values)
    )
