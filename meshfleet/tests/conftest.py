"""Shared fakes and fixtures."""

import asyncio
import json
import threading

import pytest
import requests
import websockets

from meshfleet.config import CoordinatorSettings, NodeSettings
from meshfleet.coordinator import Coordinator
from meshfleet.hub import RealtimeHub
from meshfleet.monitoring import StatsAggregator
from meshfleet.registry import NodeRegistry


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeNetworkProbe:
    """
    In-memory mesh probe.

    ``reachable`` maps address to True, False or an exception to raise;
    addresses not in the map use ``default_reachable``.
    """

    def __init__(self, neighbors=None, routes=None, status=None):
        self.neighbors = list(neighbors or [])
        self.routes = list(routes or [])
        self.status = status or {"active": True, "interface": "bat0"}
        self.reachable = {}
        self.default_reachable = True
        self.delay = 0.0
        self.probed = []

    async def list_neighbors(self):
        return list(self.neighbors)

    async def list_routes(self):
        return list(self.routes)

    async def is_reachable(self, address, timeout_ms):
        self.probed.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.reachable.get(address, self.default_reachable)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def mesh_status(self):
        return {**self.status, "neighbors": list(self.neighbors), "routes": list(self.routes)}


class FakeOverlayProbe:
    def __init__(self, peers=None, networks=None, online=True):
        self.peers = list(peers or [])
        self.networks = list(networks or [])
        self.online = online

    async def list_peers(self):
        return list(self.peers)

    async def list_networks(self):
        return list(self.networks)

    async def overlay_status(self):
        return {"online": self.online, "address": "abcdef0123"}


class FakeAccessControl:
    def __init__(self):
        self.blocked = set()
        self.calls = []
        self.findings = []

    async def block(self, address):
        self.calls.append(("block", address))
        self.blocked.add(address)

    async def unblock(self, address):
        self.calls.append(("unblock", address))
        self.blocked.discard(address)

    async def sweep(self):
        return list(self.findings)


class FakeWebSocket:
    """Websocket stand-in recording every frame sent."""

    def __init__(self, incoming=None, fail_send=False):
        self.incoming = list(incoming or [])
        self.fail_send = fail_send
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None

    async def send(self, data):
        if self.fail_send or self.closed:
            raise websockets.exceptions.ConnectionClosed(None, None)
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=""):
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for message in self.incoming:
            if self.closed:
                return
            yield message

    def events(self):
        return [m["event"] for m in self.sent]


def http_error(status_code: int) -> requests.HTTPError:
    response = requests.Response()
    response.status_code = status_code
    return requests.HTTPError(f"{status_code} Error", response=response)


class FakeCoordinatorService:
    """
    Coordinator side of the agent's HTTP transport.

    Usable as a HeartbeatClient ``client_factory``: calling it returns a
    client bound to this service, and ``probe`` answers discovery.
    """

    def __init__(self, url="http://10.0.0.1:3000"):
        self.url = url
        self.available = True
        self.known_nodes = set()
        self.registrations = []
        self.heartbeats = []
        self.statuses = []
        self.diagnostics = []
        self.probes = 0
        self.heartbeat_error = None
        self.register_error = None
        self.responses = []

    def probe(self, candidates, timeout=5.0):
        self.probes += 1
        self.candidates = list(candidates)
        return self.url if self.available else None

    def __call__(self, base_url, timeout=10.0):
        return FakeCoordinatorClient(self, base_url)


class FakeCoordinatorClient:
    def __init__(self, service, base_url):
        self.service = service
        self.base_url = base_url

    def register(self, payload):
        if self.service.register_error:
            raise self.service.register_error
        self.service.registrations.append(payload)
        self.service.known_nodes.add(payload["nodeId"])
        return {"success": True}

    def send_heartbeat(self, node_id, payload, timeout=None):
        if self.service.heartbeat_error:
            raise self.service.heartbeat_error
        if node_id not in self.service.known_nodes:
            raise http_error(404)
        self.service.heartbeats.append(payload)
        if self.service.responses:
            return self.service.responses.pop(0)
        return {"success": True, "commands": []}

    def send_status(self, node_id, payload):
        self.service.statuses.append(payload)
        return {"success": True}

    def send_diagnostics(self, node_id, payload):
        self.service.diagnostics.append(payload)
        return {"success": True}


def fake_system_stats():
    return {
        "cpu": {"usage": 12.5, "cores": 4},
        "memory": {"usage": 40.0, "total": 8_000_000_000, "available": 4_800_000_000},
    }


def fake_network_stats():
    return {"interfaces": {"bat0": {"name": "bat0", "operstate": "up"}}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def network_probe():
    return FakeNetworkProbe()


@pytest.fixture
def overlay_probe():
    return FakeOverlayProbe()


@pytest.fixture
def access_control():
    return FakeAccessControl()


@pytest.fixture
def registry(network_probe, access_control, clock):
    return NodeRegistry(network_probe, access_control, offline_threshold=60, probe_timeout=1, clock=clock)


@pytest.fixture
def stats(network_probe, overlay_probe, clock):
    return StatsAggregator(
        network_probe,
        overlay_probe,
        system_collector=fake_system_stats,
        network_collector=fake_network_stats,
        clock=clock
    )


@pytest.fixture
def hub(registry, stats, network_probe, clock):
    async def status_provider():
        return {"coordinator": {"address": "192.168.100.1"}, "nodes": registry.get_stats()}

    return RealtimeHub(
        registry,
        stats,
        network_probe,
        status_provider=status_provider,
        coordinator_address="192.168.100.1",
        idle_timeout=1800,
        clock=clock
    )


@pytest.fixture
def coordinator_service():
    return FakeCoordinatorService()


@pytest.fixture
def node_settings():
    return NodeSettings(
        _env_file=None,
        coordinator_candidates=["10.0.0.1"],
        heartbeat_interval=30,
        max_failures=5
    )


@pytest.fixture
def coordinator(network_probe, overlay_probe, access_control, clock):
    """A Coordinator whose loop runs in a background thread; servers are not bound."""
    settings = CoordinatorSettings(_env_file=None, request_timeout=5)
    service = Coordinator(
        settings,
        network_probe=network_probe,
        overlay_probe=overlay_probe,
        access_control=access_control,
        clock=clock
    )
    service.stats.system_collector = fake_system_stats
    service.stats.network_collector = fake_network_stats

    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    service.loop = loop
    service.started_at = clock()

    yield service

    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


@pytest.fixture
def on_loop(coordinator):
    """Run a coroutine on the coordinator's background loop."""
    def run(coro):
        return asyncio.run_coroutine_threadsafe(coro, coordinator.loop).result(timeout=5)
    return run


@pytest.fixture
def make_websocket():
    return FakeWebSocket
