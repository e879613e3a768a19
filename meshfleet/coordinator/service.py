"""Coordinator service: wires registry, stats, realtime hub and HTTP API."""

import asyncio
import logging
import signal
import time
from typing import Any, Callable, Dict, List, Optional

from .. import __version__
from ..config import LOG_FORMAT, CoordinatorSettings
from ..models import Command, HeartbeatRecord, Node, NodeStatus
from ..monitoring import StatsAggregator
from ..probes import (
    AccessControl,
    InMemoryAccessControl,
    NetworkProbe,
    NullOverlayProbe,
    OverlayProbe,
    StandaloneNetworkProbe,
)
from ..registry import NodeRegistry
from ..hub import RealtimeHub
from ..scheduler import Scheduler
from .api import CoordinatorAPI


logger = logging.getLogger(__name__)


class Coordinator:
    """
    Fleet coordinator.

    Owns one asyncio loop on which the registry, the stats aggregator, the
    realtime hub and the periodic cycles live. The Flask API runs in its
    own thread and submits work to that loop.

    Cycles:
    - monitoring: discovery merge, health probes, node/topology broadcast
    - stats: snapshot, stats/performance broadcast
    - security: access-control sweep, one security alert per finding
    - reap: disconnect idle realtime sessions
    """

    def __init__(
        self,
        settings: Optional[CoordinatorSettings] = None,
        network_probe: Optional[NetworkProbe] = None,
        overlay_probe: Optional[OverlayProbe] = None,
        access_control: Optional[AccessControl] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize coordinator.

        Args:
            settings: Coordinator settings (defaults from the environment)
            network_probe: Mesh probe (standalone probe if None)
            overlay_probe: Overlay probe (null probe if None)
            access_control: Block list collaborator (in-memory if None)
            clock: Time source
        """
        self.settings = settings or CoordinatorSettings()
        self.network_probe = network_probe or StandaloneNetworkProbe()
        self.overlay_probe = overlay_probe or NullOverlayProbe()
        self.access_control = access_control or InMemoryAccessControl()
        self._clock = clock

        self.registry = NodeRegistry(
            self.network_probe,
            self.access_control,
            offline_threshold=self.settings.offline_threshold,
            probe_timeout=self.settings.probe_timeout,
            clock=clock
        )
        self.stats = StatsAggregator(
            self.network_probe,
            self.overlay_probe,
            max_history=self.settings.history_size,
            clock=clock
        )
        self.hub = RealtimeHub(
            self.registry,
            self.stats,
            self.network_probe,
            status_provider=self.get_status,
            coordinator_address=self.settings.coordinator_address,
            action_handler=self.node_action,
            idle_timeout=self.settings.idle_timeout,
            performance_minutes=self.settings.performance_minutes,
            clock=clock
        )
        self.api = CoordinatorAPI(self, request_timeout=self.settings.request_timeout)

        self.scheduler = Scheduler()
        timeout = self.settings.cycle_timeout
        self.scheduler.add("monitoring", self.settings.discovery_interval, self.monitoring_cycle, timeout)
        self.scheduler.add("stats", self.settings.stats_interval, self.stats_cycle, timeout)
        self.scheduler.add("security", self.settings.security_interval, self.security_cycle, timeout)
        self.scheduler.add("reap", self.settings.reap_interval, self.reap_cycle, timeout)

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.started_at: Optional[float] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def get_status(self) -> dict:
        """Coordinator status; the ``coordinator`` key marks this as a coordinator."""
        now = self._clock()
        return {
            "coordinator": {
                "address": self.settings.coordinator_address,
                "version": __version__,
                "startedAt": self.started_at,
                "uptime": now - self.started_at if self.started_at else 0,
            },
            "nodes": self.registry.get_stats(),
            "system": self.stats.system_summary(),
            "tasks": self.scheduler.get_stats(),
            "timestamp": now,
        }

    # Operations that also notify observers

    async def register_node(self, payload: Dict[str, Any]) -> Node:
        node = await self.registry.register(payload)
        await self.hub.broadcast_nodes()
        return node

    async def ingest_heartbeat(self, node_id: str, record: HeartbeatRecord) -> List[Command]:
        previous = self.registry.get_node(node_id)
        commands = await self.registry.ingest_heartbeat(node_id, record)
        current = self.registry.get_node(node_id)
        if previous and current and previous.status != current.status:
            await self.hub.broadcast_node_status(node_id, current.status.value)
        return commands

    async def node_action(self, node_id: str, action: str) -> Any:
        result = await self.registry.dispatch_action(node_id, action)
        if action in ("disconnect", "reconnect"):
            node = self.registry.get_node(node_id)
            await self.hub.broadcast_node_status(node_id, node.status.value)
            await self.hub.broadcast_nodes()
        return result

    # Cycles

    async def _fetch(self, name: str, fetch) -> List[Dict[str, Any]]:
        try:
            return await fetch()
        except Exception as e:
            logger.error(f"Error getting {name}: {e}")
            return []

    async def monitoring_cycle(self):
        """Discovery merge, then health, then broadcast."""
        neighbors, peers = await asyncio.gather(
            self._fetch("mesh neighbors", self.network_probe.list_neighbors),
            self._fetch("overlay peers", self.overlay_probe.list_peers),
        )
        created = await self.registry.discover(neighbors, peers)
        changes = await self.registry.refresh_health()

        for node_id, status in changes.items():
            await self.hub.broadcast_node_status(node_id, status.value)
            if status == NodeStatus.OFFLINE:
                await self.hub.broadcast_alert({
                    "type": "node-offline",
                    "severity": "warning",
                    "nodeId": node_id,
                    "message": f"Node {node_id} went offline",
                })

        await self.hub.broadcast_nodes()
        await self.hub.broadcast_topology()
        if created:
            logger.info(f"Discovery added {len(created)} nodes")

    async def stats_cycle(self):
        snapshot = await self.stats.collect()
        await self.hub.broadcast_stats(snapshot)
        await self.hub.broadcast_performance()

    async def security_cycle(self):
        findings = await self.access_control.sweep()
        for finding in findings:
            await self.hub.broadcast_security_alert(finding)

    async def reap_cycle(self):
        await self.hub.reap_idle()

    # Lifecycle

    async def start(self):
        """
        Bind both surfaces and start the cycles.

        Raises:
            OSError: a listening port could not be bound
        """
        self.loop = asyncio.get_running_loop()
        self.started_at = self._clock()

        await self.hub.start(self.settings.host, self.settings.realtime_port)
        try:
            self.api.start(self.settings.host, self.settings.port)
        except OSError:
            await self.hub.shutdown()
            raise
        await self.scheduler.start()

        logger.info(f"Coordinator started (mesh address {self.settings.coordinator_address})")

    async def stop(self):
        """Cancel cycles, notify observers, then stop both servers."""
        logger.info("Stopping coordinator...")
        await self.scheduler.stop()

        try:
            await asyncio.wait_for(self.hub.shutdown(), timeout=self.settings.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning("Realtime hub shutdown timed out")

        await asyncio.to_thread(self.api.stop)
        self.loop = None
        logger.info("Coordinator stopped")

    def request_stop(self):
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self):
        """Run until SIGINT/SIGTERM or request_stop()."""
        self._stop_event = asyncio.Event()
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                pass

        try:
            await self._stop_event.wait()
        finally:
            await self.stop()


def main():
    """CLI entry point for the coordinator."""
    import argparse

    parser = argparse.ArgumentParser(description='Mesh Fleet Coordinator')
    parser.add_argument('--host', help='Host to bind to')
    parser.add_argument('--port', type=int, help='HTTP port')
    parser.add_argument('--realtime-port', type=int, help='Websocket port')
    parser.add_argument('--coordinator-address', help='Coordinator mesh address')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    args = parser.parse_args()

    overrides = {
        key: value for key, value in vars(args).items()
        if key != 'debug' and value is not None
    }
    settings = CoordinatorSettings(**overrides)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else settings.log_level.upper(),
        format=LOG_FORMAT
    )

    return run(settings)


def run(settings: CoordinatorSettings) -> int:
    """Run a coordinator until interrupted; returns a process exit code."""
    coordinator = Coordinator(settings)
    try:
        asyncio.run(coordinator.run_forever())
    except OSError as e:
        logger.error(f"Failed to start coordinator: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == '__main__':
    import sys
    sys.exit(main())
