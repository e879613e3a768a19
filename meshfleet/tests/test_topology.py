"""Tests for the topology graph."""

from meshfleet.hub import build_topology
from meshfleet.models import Node, NodeStatus


COORDINATOR = "192.168.100.1"


def test_empty_mesh_has_only_coordinator():
    topology = build_topology([], {}, COORDINATOR, now=10.0)

    assert [n["type"] for n in topology["nodes"]] == ["coordinator"]
    assert topology["links"] == []
    assert topology["metadata"]["nodeCount"] == 1
    assert topology["metadata"]["discoveredNodes"] == 1


def test_graph_merges_registry_routes_and_neighbors():
    """Test node sources and link kinds."""
    nodes = [Node(id="abc", address="10.0.0.2", status=NodeStatus.WARNING, info={"hostname": "pi-2"})]
    mesh_status = {
        "neighbors": [
            {"address": "10.0.0.2", "quality": "0.9", "iface": "wlan0"},
            {"address": "10.0.0.3", "quality": "0.8", "iface": "wlan0"},
        ],
        "routes": [
            {"originator": "10.0.0.4", "nextHop": "10.0.0.3", "quality": "0.6", "isBestPath": True},
            {"originator": "10.0.0.3", "nextHop": "10.0.0.4", "quality": "0.6"},
            {"originator": "10.0.0.2", "nextHop": "10.0.0.2", "quality": "0.9"},
        ],
    }

    topology = build_topology(nodes, mesh_status, COORDINATOR, now=10.0)
    by_address = {n["address"]: n for n in topology["nodes"]}

    assert by_address["10.0.0.2"]["source"] == "registered"
    assert by_address["10.0.0.2"]["status"] == "warning"
    assert by_address["10.0.0.2"]["name"] == "pi-2"
    assert by_address[COORDINATOR]["type"] == "coordinator"
    assert by_address["10.0.0.4"]["source"] == "mesh-routes"
    assert by_address["10.0.0.3"]["source"] == "mesh-nexthop"

    direct = [l for l in topology["links"] if l["type"] == "direct"]
    multi = [l for l in topology["links"] if l["type"] == "multi-hop"]
    assert {l["target"] for l in direct} == {"10.0.0.2", "10.0.0.3"}
    # 10.0.0.3 <-> 10.0.0.4 appears in both directions but is linked once.
    assert len(multi) == 1
    assert multi[0]["source"] == "10.0.0.3"
    assert multi[0]["isBestPath"] is True

    metadata = topology["metadata"]
    assert metadata["registeredNodes"] == 1
    assert metadata["directLinks"] == 2
    assert metadata["multiHopLinks"] == 1
    assert metadata["linkCount"] == 3
    assert topology["mesh"]["routeCount"] == 3
