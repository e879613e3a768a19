"""Node agent: coordinator discovery, registration and heartbeats."""

import asyncio
import logging
import signal
import sys
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Tuple

import requests

from ..config import LOG_FORMAT, NodeSettings
from ..errors import HeartbeatTimeout, RegistrationFailure, UnknownCommand
from ..models import Command, CommandType, HeartbeatRecord, NodeStatus
from ..monitoring.system import collect_network_stats, collect_node_info, collect_system_stats
from ..probes import NetworkProbe, NullOverlayProbe, OverlayProbe, StandaloneNetworkProbe
from .client import CoordinatorClient
from .identity import generate_node_id


logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    """Lifecycle of the node agent."""
    UNREGISTERED = "unregistered"
    DISCOVERING = "discovering"
    REGISTERED = "registered"
    HEARTBEATING = "heartbeating"


class HeartbeatClient:
    """
    Peer-side agent.

    unregistered -> discovering -> registered -> heartbeating. Repeated
    heartbeat failures send the agent back to discovering; a discovery that
    finds nothing leaves it unregistered (standalone) until the next
    attempt. Commands returned in heartbeat responses are executed one by
    one; an unknown command is logged and skipped.

    Blocking HTTP calls run in worker threads so the loop stays free.
    """

    def __init__(
        self,
        settings: Optional[NodeSettings] = None,
        node_id: Optional[str] = None,
        client_factory=CoordinatorClient,
        network_probe: Optional[NetworkProbe] = None,
        overlay_probe: Optional[OverlayProbe] = None,
        system_collector: Callable[[], Dict[str, Any]] = collect_system_stats,
        info_collector: Callable[[], Dict[str, Any]] = collect_node_info,
        exit_func: Callable[[int], Any] = sys.exit,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize heartbeat client.

        Args:
            settings: Agent settings (defaults from the environment)
            node_id: Node ID (derived from hostname and MAC if None)
            client_factory: CoordinatorClient-like class; needs ``probe``
            network_probe: Mesh probe for heartbeat sub-status and diagnostics
            overlay_probe: Overlay probe for heartbeat sub-status
            system_collector: Blocking host metrics collector
            info_collector: Blocking hardware snapshot collector
            exit_func: Called with the exit code after a restart command
            clock: Time source
        """
        self.settings = settings or NodeSettings()
        self.node_id = node_id or self.settings.node_id or generate_node_id()
        self.client_factory = client_factory
        self.network_probe = network_probe or StandaloneNetworkProbe()
        self.overlay_probe = overlay_probe or NullOverlayProbe()
        self.system_collector = system_collector
        self.info_collector = info_collector
        self.exit_func = exit_func
        self._clock = clock

        self.heartbeat_interval = self.settings.heartbeat_interval
        self.max_failures = self.settings.max_failures

        self.state = AgentState.UNREGISTERED
        self.state_history: Deque[Tuple[float, AgentState]] = deque(maxlen=50)
        self.coordinator_url: Optional[str] = None
        self.client = None
        self.failure_count = 0
        self.heartbeats_sent = 0
        self.last_heartbeat: Optional[float] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._stop_event: Optional[asyncio.Event] = None

        logger.info(f"Node agent initialized: {self.node_id}")

    @property
    def is_running(self) -> bool:
        return self._running

    def _set_state(self, state: AgentState):
        if state != self.state:
            logger.debug(f"Agent state: {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append((self._clock(), state))

    # Discovery and registration

    async def discover_coordinator(self) -> Optional[str]:
        """
        Probe candidate coordinators in order.

        Returns:
            Base URL of the adopted coordinator, or None (standalone)
        """
        self._set_state(AgentState.DISCOVERING)
        url = await asyncio.to_thread(
            self.client_factory.probe,
            self.settings.candidate_urls(),
            self.settings.discovery_timeout
        )

        if url is None:
            logger.warning("No coordinator found, running in standalone mode")
            self.coordinator_url = None
            self.client = None
            self._set_state(AgentState.UNREGISTERED)
            return None

        self.coordinator_url = url
        self.client = self.client_factory(url, timeout=self.settings.request_timeout)
        return url

    async def register(self) -> bool:
        """
        Register with the adopted coordinator.

        Returns:
            True on success; on failure the agent stays standalone
        """
        if self.client is None:
            return False

        try:
            info = await asyncio.to_thread(self.info_collector)
        except Exception as e:
            logger.warning(f"Could not collect node info: {e}")
            info = {}

        payload = {**info, "nodeId": self.node_id}
        if self.settings.advertise_address:
            payload["address"] = self.settings.advertise_address

        try:
            await asyncio.to_thread(self.client.register, payload)
        except requests.RequestException as e:
            logger.error(str(RegistrationFailure(f"Failed to register with {self.coordinator_url}: {e}")))
            self._set_state(AgentState.UNREGISTERED)
            return False

        self.failure_count = 0
        self._set_state(AgentState.REGISTERED)
        logger.info(f"Registered with coordinator at {self.coordinator_url}")
        return True

    async def _recover(self):
        """Rediscover once, then re-register."""
        logger.warning(f"{self.failure_count} consecutive heartbeat failures, rediscovering coordinator")
        self.failure_count = 0
        if await self.discover_coordinator():
            await self.register()

    # Heartbeats

    async def _system(self) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self.system_collector)
        except Exception as e:
            logger.warning(f"Could not collect system stats: {e}")
            return {}

    async def _network_status(self) -> Dict[str, Any]:
        status = {}
        for name, fetch in (("mesh", self.network_probe.mesh_status),
                            ("overlay", self.overlay_probe.overlay_status)):
            try:
                status[name] = await fetch()
            except Exception as e:
                logger.debug(f"Could not get {name} status: {e}")
                status[name] = {}
        return status

    async def build_heartbeat(self, status: NodeStatus = NodeStatus.ONLINE) -> HeartbeatRecord:
        return HeartbeatRecord(
            node_id=self.node_id,
            timestamp=self._clock(),
            status=status,
            system=await self._system(),
            network=await self._network_status()
        )

    async def send_heartbeat(self) -> bool:
        """
        Send one heartbeat and act on the response.

        Returns:
            True if the coordinator accepted it
        """
        if self.client is None:
            return False

        record = await self.build_heartbeat()
        payload = record.model_dump(mode="json", by_alias=True)
        try:
            response = await asyncio.to_thread(
                self.client.send_heartbeat,
                self.node_id,
                payload,
                self.settings.heartbeat_timeout
            )
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                logger.warning("Coordinator does not know this node, re-registering")
                if await self.register():
                    return False
            self._record_failure(e)
            return False
        except requests.Timeout:
            self._record_failure(HeartbeatTimeout(
                f"No heartbeat response within {self.settings.heartbeat_timeout}s"
            ))
            return False
        except requests.RequestException as e:
            self._record_failure(e)
            return False

        self.failure_count = 0
        self.heartbeats_sent += 1
        self.last_heartbeat = record.timestamp
        self._set_state(AgentState.HEARTBEATING)

        await self.handle_response(response or {})
        return True

    def _record_failure(self, error: Exception):
        self.failure_count += 1
        logger.warning(f"Heartbeat failed ({self.failure_count}/{self.max_failures}): {error}")

    async def handle_response(self, response: Dict[str, Any]):
        """Execute returned commands, then answer a full status request."""
        for raw in response.get("commands") or []:
            try:
                await self.execute_command(raw)
            except UnknownCommand as e:
                logger.warning(f"Skipping command: {e}")
            except Exception as e:
                logger.error(f"Error executing command {raw}: {e}")

        if response.get("requestFullStatus"):
            await self.send_full_status()

    # Commands

    async def execute_command(self, raw: Any):
        """
        Execute one coordinator command.

        Raises:
            UnknownCommand: the command type is not supported
        """
        command = raw if isinstance(raw, Command) else Command.model_validate(raw)
        try:
            command_type = CommandType(command.type)
        except ValueError:
            raise UnknownCommand(command.type)

        logger.info(f"Executing command: {command_type.value}")

        if command_type == CommandType.RESTART:
            await self.stop()
            self.exit_func(0)
        elif command_type == CommandType.UPDATE_CONFIG:
            self.apply_config(command.config)
        elif command_type == CommandType.RUN_DIAGNOSTICS:
            await self.run_diagnostics()

    def apply_config(self, config: Dict[str, Any]):
        """
        Apply an ``update_config`` command.

        ``heartbeatInterval`` is in milliseconds.
        """
        if "heartbeatInterval" in config:
            interval = float(config["heartbeatInterval"]) / 1000
            if interval <= 0:
                logger.warning(f"Ignoring non-positive heartbeat interval: {config['heartbeatInterval']}")
            else:
                self.heartbeat_interval = interval
                logger.info(f"Heartbeat interval set to {interval}s")
                if self._wake is not None:
                    self._wake.set()

        if "maxFailures" in config:
            self.max_failures = max(1, int(config["maxFailures"]))
            logger.info(f"Max failures set to {self.max_failures}")

    async def run_diagnostics(self) -> Dict[str, Any]:
        """Collect a diagnostics bundle and report it to the coordinator."""
        target = self.settings.diagnostics_target
        try:
            reachable = await self.network_probe.is_reachable(target, 5000)
        except Exception as e:
            logger.debug(f"Connectivity check failed: {e}")
            reachable = False

        bundle = {
            "nodeId": self.node_id,
            "timestamp": self._clock(),
            "connectivity": {"target": target, "reachable": bool(reachable)},
            "network": await self._network_status(),
            "system": await self._system(),
        }

        if self.client is not None:
            try:
                await asyncio.to_thread(self.client.send_diagnostics, self.node_id, bundle)
            except requests.RequestException as e:
                logger.error(f"Failed to send diagnostics: {e}")
        return bundle

    async def send_full_status(self) -> bool:
        """Send the extended status bundle the coordinator asked for."""
        if self.client is None:
            return False

        try:
            interfaces = await asyncio.to_thread(collect_network_stats)
        except Exception as e:
            logger.debug(f"Could not collect interface stats: {e}")
            interfaces = {}

        payload = {
            "nodeId": self.node_id,
            "timestamp": self._clock(),
            "system": await self._system(),
            "network": {**await self._network_status(), **interfaces},
        }
        try:
            await asyncio.to_thread(self.client.send_status, self.node_id, payload)
        except requests.RequestException as e:
            logger.error(f"Failed to send full status: {e}")
            return False
        return True

    # Lifecycle

    async def _sleep(self, started: float):
        """Sleep until one interval after ``started``; interval changes apply immediately."""
        loop = asyncio.get_running_loop()
        while self._running:
            remaining = self.heartbeat_interval - (loop.time() - started)
            if remaining <= 0:
                return
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return

    async def run_cycle(self):
        """One pass: connect if needed, heartbeat, recover on repeated failure."""
        if self.state == AgentState.UNREGISTERED or self.client is None:
            if await self.discover_coordinator():
                await self.register()

        if self.state in (AgentState.REGISTERED, AgentState.HEARTBEATING):
            await self.send_heartbeat()
            if self.failure_count >= self.max_failures:
                await self._recover()

    async def _loop(self):
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in heartbeat cycle: {e}")
            await self._sleep(started)

    async def start(self):
        if self._running:
            return
        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="heartbeat")
        logger.info(f"Heartbeat started (every {self.heartbeat_interval}s)")

    async def stop(self):
        """Stop the loop and send a best-effort offline heartbeat."""
        if not self._running and self._task is None:
            return
        self._running = False
        if self._wake is not None:
            self._wake.set()

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.client is not None and self.state in (AgentState.REGISTERED, AgentState.HEARTBEATING):
            await self._send_offline()

        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Heartbeat stopped")

    async def _send_offline(self):
        timeout = self.settings.shutdown_timeout
        record = HeartbeatRecord(
            node_id=self.node_id,
            timestamp=self._clock(),
            status=NodeStatus.OFFLINE
        )
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.send_heartbeat,
                    self.node_id,
                    record.model_dump(mode="json", by_alias=True),
                    timeout
                ),
                timeout=timeout
            )
        except Exception as e:
            logger.debug(f"Final heartbeat not delivered: {e}")

    async def run_forever(self):
        """Run until SIGINT/SIGTERM."""
        self._stop_event = asyncio.Event()
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.ensure_future(self.stop()))
            except NotImplementedError:
                pass

        await self._stop_event.wait()

    def get_status(self) -> dict:
        return {
            "nodeId": self.node_id,
            "state": self.state.value,
            "coordinator": self.coordinator_url,
            "running": self._running,
            "heartbeatInterval": self.heartbeat_interval,
            "failureCount": self.failure_count,
            "maxFailures": self.max_failures,
            "heartbeatsSent": self.heartbeats_sent,
            "lastHeartbeat": self.last_heartbeat,
        }


def main():
    """CLI entry point for the node agent."""
    import argparse

    parser = argparse.ArgumentParser(description='Mesh Fleet Node Agent')
    parser.add_argument('--coordinator', action='append', dest='coordinator_candidates',
                        help='Coordinator address or URL (can be specified multiple times)')
    parser.add_argument('--coordinator-port', type=int, help='Coordinator HTTP port')
    parser.add_argument('--node-id', help='Node ID (derived from hostname and MAC if omitted)')
    parser.add_argument('--advertise-address', help='Mesh address to register with')
    parser.add_argument('--interval', type=float, dest='heartbeat_interval', help='Heartbeat interval in seconds')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    args = parser.parse_args()

    overrides = {
        key: value for key, value in vars(args).items()
        if key != 'debug' and value is not None
    }
    settings = NodeSettings(**overrides)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else settings.log_level.upper(),
        format=LOG_FORMAT
    )

    return run(settings)


def run(settings: NodeSettings) -> int:
    """Run a node agent until interrupted; returns a process exit code."""
    agent = HeartbeatClient(settings)
    try:
        asyncio.run(agent.run_forever())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == '__main__':
    sys.exit(main())
