"""Tests for the coordinator cycles."""

import json

from meshfleet.models import HeartbeatRecord, NodeStatus


def connect(coordinator, on_loop, make_websocket):
    ws = make_websocket()
    on_loop(coordinator.hub.open_session(ws))
    return ws


def test_monitoring_cycle_discovers_and_broadcasts(coordinator, on_loop, make_websocket, network_probe, overlay_probe):
    """Test discovery, health and broadcasts in one cycle."""
    network_probe.neighbors = [{"address": "10.0.0.2", "quality": "0.9"}]
    overlay_probe.peers = [{"address": "10.0.0.2", "latency": 3}]
    ws = connect(coordinator, on_loop, make_websocket)

    on_loop(coordinator.monitoring_cycle())

    node = coordinator.registry.get_node("10.0.0.2")
    assert node.status == NodeStatus.ONLINE
    assert node.overlay_info["latency"] == 3
    assert ws.events() == ["bootstrap", "nodes-update", "topology-update"]


def test_monitoring_cycle_alerts_on_offline(coordinator, on_loop, make_websocket, network_probe, clock):
    """Test node-status-change and alert when a node goes offline."""
    network_probe.neighbors = [{"address": "10.0.0.2"}]
    on_loop(coordinator.monitoring_cycle())

    ws = connect(coordinator, on_loop, make_websocket)
    network_probe.reachable["10.0.0.2"] = False
    clock.advance(90)
    on_loop(coordinator.monitoring_cycle())

    events = ws.events()
    assert events[1:3] == ["node-status-change", "alert"]
    assert ws.sent[1]["data"]["status"] == "offline"
    assert ws.sent[2]["data"]["type"] == "node-offline"
    assert ws.sent[2]["data"]["nodeId"] == "10.0.0.2"


def test_monitoring_cycle_survives_probe_errors(coordinator, on_loop, network_probe):
    """Test neighbor listing failures are isolated."""
    async def broken():
        raise RuntimeError("batctl missing")

    network_probe.list_neighbors = broken

    on_loop(coordinator.monitoring_cycle())

    assert coordinator.registry.list_nodes() == []


def test_stats_cycle(coordinator, on_loop, make_websocket):
    ws = connect(coordinator, on_loop, make_websocket)

    on_loop(coordinator.stats_cycle())

    assert ws.events() == ["bootstrap", "stats-update"]
    assert len(coordinator.stats.history) == 1


def test_security_cycle_broadcasts_findings(coordinator, on_loop, make_websocket, access_control):
    """Test one security alert per sweep finding."""
    access_control.findings = [
        {"type": "blocked-traffic", "message": "12 packets dropped from 10.0.0.66"},
        {"type": "unknown-peer", "message": "unregistered overlay peer", "severity": "critical"},
    ]
    ws = connect(coordinator, on_loop, make_websocket)

    on_loop(coordinator.security_cycle())

    alerts = [m["data"] for m in ws.sent if m["event"] == "security-alert"]
    assert [a["severity"] for a in alerts] == ["warning", "critical"]


def test_heartbeat_status_change_is_broadcast(coordinator, on_loop, make_websocket):
    """Test heartbeat-driven status changes reach observers."""
    on_loop(coordinator.register_node({"nodeId": "abc", "address": "10.0.0.9"}))
    ws = connect(coordinator, on_loop, make_websocket)

    on_loop(coordinator.ingest_heartbeat("abc", HeartbeatRecord(node_id="abc", status="warning")))
    on_loop(coordinator.ingest_heartbeat("abc", HeartbeatRecord(node_id="abc", status="warning")))

    changes = [m["data"] for m in ws.sent if m["event"] == "node-status-change"]
    assert changes == [{"nodeId": "abc", "status": "warning", "timestamp": changes[0]["timestamp"]}]


def test_coordinator_status(coordinator, on_loop):
    status = on_loop(coordinator.get_status())

    assert status["coordinator"]["address"] == "192.168.100.1"
    assert set(status["tasks"]) == {"monitoring", "stats", "security", "reap"}


def test_realtime_action_is_broadcast(coordinator, on_loop, make_websocket, access_control):
    """Test a node action from one observer reaches every observer."""
    on_loop(coordinator.register_node({"nodeId": "abc", "address": "10.0.0.9"}))
    watcher = connect(coordinator, on_loop, make_websocket)
    actor = make_websocket()
    session = on_loop(coordinator.hub.open_session(actor))

    on_loop(coordinator.hub.handle_message(
        session, json.dumps({"event": "node-action", "data": {"nodeId": "abc", "action": "disconnect"}})
    ))

    assert watcher.events() == ["bootstrap", "node-status-change", "nodes-update"]
    assert watcher.sent[1]["data"]["status"] == "blocked"
    assert actor.events()[-1] == "node-action-result"
    assert "10.0.0.9" in access_control.blocked
