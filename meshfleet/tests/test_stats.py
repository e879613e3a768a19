"""Tests for stats aggregation."""

import asyncio

import pytest


def test_collect_builds_all_sections(stats, network_probe, overlay_probe):
    """Test one snapshot."""
    network_probe.neighbors = [
        {"address": "10.0.0.2", "quality": "0.90"},
        {"address": "10.0.0.3", "quality": "1.00"},
    ]
    network_probe.routes = [{"originator": "10.0.0.2", "nextHop": "10.0.0.2"}]
    overlay_probe.networks = [{"id": "n1", "status": "OK"}, {"id": "n2", "status": "ACCESS_DENIED"}]
    overlay_probe.peers = [{"address": "10.0.0.2"}]

    snapshot = asyncio.run(stats.collect())

    assert snapshot.system["cpu"]["usage"] == 12.5
    assert "bat0" in snapshot.network["interfaces"]
    assert snapshot.mesh["metrics"]["neighborCount"] == 2
    assert snapshot.mesh["metrics"]["routeCount"] == 1
    assert snapshot.mesh["metrics"]["avgQuality"] == pytest.approx(0.95)
    assert snapshot.mesh["health"]["quality"] == 95
    assert snapshot.overlay["metrics"] == {
        "networkCount": 2,
        "peerCount": 1,
        "onlineStatus": True,
        "connectedNetworks": 1,
    }
    assert stats.latest() is snapshot


def test_history_evicts_oldest_first(stats, clock):
    """Test FIFO history bounded at 100 entries."""
    async def collect_many():
        snapshots = []
        for _ in range(101):
            clock.advance(5)
            snapshots.append(await stats.collect())
        return snapshots

    snapshots = asyncio.run(collect_many())
    history = stats.get_history()

    assert len(history) == 100
    assert snapshots[0] not in history
    assert history[0] is snapshots[1]
    assert history[-1] is snapshots[-1]


def test_failing_collector_yields_empty_section(stats, network_probe):
    """Test sub-collector isolation."""
    async def broken():
        raise RuntimeError("batctl missing")

    network_probe.mesh_status = broken

    def broken_system():
        raise OSError("no /proc")

    stats.system_collector = broken_system

    snapshot = asyncio.run(stats.collect())

    assert snapshot.mesh == {}
    assert snapshot.system == {}
    assert snapshot.overlay["metrics"]["onlineStatus"] is True
    assert len(stats.history) == 1


def test_history_window_by_minutes(stats, clock):
    """Test trailing window selection."""
    async def collect_spread():
        for _ in range(4):
            await stats.collect()
            clock.advance(10 * 60)

    asyncio.run(collect_spread())

    # Snapshots at t0, +10, +20, +30 minutes; now is +40 minutes.
    assert len(stats.get_history()) == 4
    assert len(stats.get_history(minutes=25)) == 2


def test_performance_window(stats, network_probe, clock):
    """Test performance summary."""
    usages = iter([10.0, 30.0, 20.0])
    stats.system_collector = lambda: {"cpu": {"usage": next(usages)}, "memory": {"usage": 50.0}}

    async def collect_three():
        for count in (1, 3, 2):
            network_probe.neighbors = [{"address": f"n{i}", "quality": "1"} for i in range(count)]
            await stats.collect()
            clock.advance(60)

    asyncio.run(collect_three())
    window = stats.performance_window(30)

    assert window.data_points == 3
    assert window.cpu.current == 20.0
    assert window.cpu.average == 20.0
    assert window.cpu.min == 10.0
    assert window.cpu.max == 30.0
    assert window.memory.average == 50.0
    assert window.neighbors.max == 3
    assert window.end - window.start == 120
    assert window.model_dump(by_alias=True)["dataPoints"] == 3


def test_performance_window_empty(stats):
    """Test empty window."""
    assert stats.performance_window(30) is None


def test_summaries_and_reset(stats, network_probe):
    """Test status summaries from the latest snapshot."""
    network_probe.neighbors = [{"address": "10.0.0.2", "quality": "0.9"}]
    asyncio.run(stats.collect())

    summary = stats.system_summary()
    assert summary["cpu"]["usage"] == 12.5
    assert summary["memory"]["usage"] == 40.0
    assert summary["network"]["activeInterfaces"] == 1
    assert summary["mesh"]["neighbors"] == 1
    assert summary["mesh"]["active"] is True

    detail = stats.network_summary()
    assert detail["mesh"]["interface"] == "bat0"
    assert detail["mesh"]["neighbors"][0]["address"] == "10.0.0.2"

    stats.reset()
    assert stats.get_history() == []
    assert stats.latest().mesh == {}
