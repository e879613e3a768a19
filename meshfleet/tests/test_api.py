"""Tests for the coordinator HTTP API."""

import pytest

from meshfleet.models import NodeStatus


@pytest.fixture
def client(coordinator):
    coordinator.api.app.config["TESTING"] = True
    return coordinator.api.app.test_client()


def register(client, node_id="abc123", address="10.0.0.9"):
    return client.post("/nodes/register", json={
        "nodeId": node_id,
        "address": address,
        "hostname": "pi-9",
    })


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_status_identifies_coordinator(client):
    """Test /status carries the coordinator object agents look for."""
    data = client.get("/status").get_json()

    assert data["coordinator"]["address"] == "192.168.100.1"
    assert data["coordinator"]["clientCount"] == 0
    assert data["nodes"]["total"] == 0


def test_register_and_list(client):
    """Test registration and node listing."""
    response = register(client)

    assert response.status_code == 200
    node = response.get_json()["node"]
    assert node["id"] == "abc123"
    assert node["lastSeen"] > 0

    nodes = client.get("/nodes").get_json()
    assert [n["id"] for n in nodes] == ["abc123"]
    assert nodes[0]["info"]["hostname"] == "pi-9"


def test_register_requires_node_id(client):
    response = client.post("/nodes/register", json={"hostname": "x"})

    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_register_defaults_address_to_caller(client, coordinator):
    client.post("/nodes/register", json={"nodeId": "n1"})

    assert coordinator.registry.get_node("n1").address == "127.0.0.1"


def test_heartbeat_flow(client, coordinator):
    """Test heartbeat ingestion and command delivery."""
    register(client)
    client.post("/nodes/abc123/commands", json={"type": "update_config", "config": {"heartbeatInterval": 10000}})

    response = client.post("/nodes/abc123/heartbeat", json={
        "nodeId": "abc123",
        "status": "warning",
        "system": {"cpu": {"usage": 42}},
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["commands"] == [{"type": "update_config", "config": {"heartbeatInterval": 10000}}]

    node = coordinator.registry.get_node("abc123")
    assert node.status == NodeStatus.WARNING
    assert node.stats["cpu"]["usage"] == 42

    again = client.post("/nodes/abc123/heartbeat", json={"nodeId": "abc123"})
    assert again.get_json()["commands"] == []


def test_heartbeat_from_unknown_node(client, coordinator):
    """Test unregistered heartbeats get 404 and create nothing."""
    response = client.post("/nodes/ghost/heartbeat", json={"nodeId": "ghost"})

    assert response.status_code == 404
    assert response.get_json() == {"success": False, "error": "Node ghost not found"}
    assert coordinator.registry.get_node("ghost") is None


def test_heartbeat_rejects_bad_status(client):
    register(client)

    response = client.post("/nodes/abc123/heartbeat", json={"status": "sleepy"})

    assert response.status_code == 400


def test_node_actions(client, coordinator, access_control):
    """Test action endpoint status codes."""
    register(client)

    ok = client.post("/nodes/abc123/action", json={"action": "disconnect"})
    assert ok.status_code == 200
    assert ok.get_json() == {"success": True, "result": {"message": "Node disconnected"}}
    assert "10.0.0.9" in access_control.blocked

    ping = client.post("/nodes/abc123/action", json={"action": "ping"})
    assert ping.get_json()["result"] is True

    assert client.post("/nodes/missing-id/action", json={"action": "ping"}).status_code == 404
    assert client.post("/nodes/abc123/action", json={"action": "explode"}).status_code == 400
    assert client.post("/nodes/abc123/action", json={}).status_code == 400
    assert coordinator.registry.get_node("missing-id") is None


def test_action_failure_is_500(client, network_probe):
    register(client)
    network_probe.reachable["10.0.0.9"] = RuntimeError("ping binary missing")

    response = client.post("/nodes/abc123/action", json={"action": "ping"})

    assert response.status_code == 500
    assert "ping binary missing" in response.get_json()["error"]


def test_status_and_diagnostics_reports(client, coordinator):
    register(client)

    assert client.post("/nodes/abc123/status", json={"system": {"cpu": {"usage": 1}}}).status_code == 200
    assert client.post("/nodes/abc123/diagnostics", json={"connectivity": {}}).status_code == 200
    assert client.post("/nodes/ghost/diagnostics", json={}).status_code == 404

    assert coordinator.registry.get_diagnostics("abc123") == {"connectivity": {}}


def test_queue_command_validation(client):
    register(client)

    assert client.post("/nodes/abc123/commands", json={"type": "restart"}).status_code == 202
    assert client.post("/nodes/abc123/commands", json={}).status_code == 400
    assert client.post("/nodes/ghost/commands", json={"type": "restart"}).status_code == 404


def test_stats_endpoints(client, coordinator, on_loop):
    """Test stats, performance and topology views."""
    assert client.get("/stats/performance").get_json() is None

    on_loop(coordinator.stats.collect())

    stats = client.get("/stats").get_json()
    assert stats["system"]["cpu"]["usage"] == 12.5

    performance = client.get("/stats/performance?minutes=5").get_json()
    assert performance["dataPoints"] == 1

    topology = client.get("/topology").get_json()
    assert topology["metadata"]["coordinatorAddress"] == "192.168.100.1"


@pytest.mark.parametrize("path", ["/status", "/health", "/nodes", "/stats", "/stats/performance"])
def test_unavailable_when_loop_stopped(client, coordinator, path):
    """Test every read goes through the coordinator loop."""
    loop = coordinator.loop
    coordinator.loop = None
    try:
        response = client.get(path)
    finally:
        coordinator.loop = loop

    assert response.status_code == 503
    assert response.get_json()["success"] is False


def test_non_object_bodies_are_rejected(client):
    """Test JSON bodies that are not objects get a JSON 400."""
    register(client)

    for path in ("/nodes/register", "/nodes/abc123/status", "/nodes/abc123/action", "/nodes/abc123/heartbeat"):
        response = client.post(path, json=[1, 2])
        assert response.status_code == 400
        assert response.is_json
        assert response.get_json()["success"] is False


def test_routing_errors_are_json(client):
    missing = client.get("/no-such-route")
    wrong_method = client.delete("/nodes")

    assert missing.status_code == 404
    assert missing.get_json()["success"] is False
    assert wrong_method.status_code == 405
    assert wrong_method.get_json()["success"] is False


def test_unexpected_errors_are_json(client, coordinator):
    """Test unhandled handler errors become a JSON 500."""
    register(client)

    async def broken(node_id, payload):
        raise RuntimeError("status store unavailable")

    coordinator.registry.update_status = broken

    response = client.post("/nodes/abc123/status", json={"system": {}})

    assert response.status_code == 500
    assert response.is_json
    assert response.get_json() == {"success": False, "error": "status store unavailable"}
