"""Mesh topology graph for dashboards."""

from typing import Any, Dict, List

from ..models import Node


def build_topology(
    nodes: List[Node],
    mesh_status: Dict[str, Any],
    coordinator_address: str,
    now: float
) -> dict:
    """
    Build a node/link graph from the registry and the mesh tables.

    Graph nodes are keyed by address. Registered nodes come first, then the
    coordinator, then originators and next hops from the route table, then
    direct neighbors. Links are ``direct`` (coordinator to neighbor) or
    ``multi-hop`` (next hop to originator, one link per pair).
    """
    neighbors = mesh_status.get("neighbors") or []
    routes = mesh_status.get("routes") or []
    graph: Dict[str, dict] = {}

    for node in nodes:
        graph[node.address] = {
            "id": node.address,
            "address": node.address,
            "status": node.status.value,
            "lastSeen": node.last_seen,
            "type": "node",
            "source": "registered",
            "name": node.info.get("hostname") or node.id,
        }

    graph[coordinator_address] = {
        "id": coordinator_address,
        "address": coordinator_address,
        "status": "online",
        "lastSeen": now,
        "type": "coordinator",
        "source": "coordinator",
        "name": "Coordinator",
    }

    for route in routes:
        originator = route.get("originator")
        next_hop = route.get("nextHop")
        if originator and originator not in graph:
            graph[originator] = _discovered(originator, route, "mesh-routes")
        if next_hop and next_hop != originator and next_hop not in graph:
            graph[next_hop] = _discovered(next_hop, route, "mesh-nexthop")

    for neighbor in neighbors:
        address = neighbor.get("address")
        if address and address not in graph:
            graph[address] = {
                "id": address,
                "address": address,
                "status": "online",
                "lastSeen": neighbor.get("lastSeen"),
                "type": "mesh-node",
                "source": "mesh-neighbor",
            }

    links = []
    seen = set()

    for neighbor in neighbors:
        address = neighbor.get("address")
        if not address:
            continue
        link_id = f"{coordinator_address}-{address}"
        if link_id in seen:
            continue
        seen.add(link_id)
        links.append({
            "source": coordinator_address,
            "target": address,
            "type": "direct",
            "quality": neighbor.get("quality", "unknown"),
            "lastSeen": neighbor.get("lastSeen"),
            "interface": neighbor.get("iface"),
            "linkId": link_id,
        })

    for route in routes:
        originator = route.get("originator")
        next_hop = route.get("nextHop")
        if not originator or not next_hop or next_hop == originator:
            continue
        link_id = f"{next_hop}-{originator}"
        if link_id in seen or f"{originator}-{next_hop}" in seen:
            continue
        seen.add(link_id)
        links.append({
            "source": next_hop,
            "target": originator,
            "type": "multi-hop",
            "quality": route.get("quality"),
            "lastSeen": route.get("lastSeen"),
            "interface": route.get("iface"),
            "isBestPath": bool(route.get("isBestPath", False)),
            "linkId": link_id,
        })

    graph_nodes = list(graph.values())
    return {
        "nodes": graph_nodes,
        "links": links,
        "mesh": {
            "neighbors": neighbors,
            "routes": routes,
            "neighborCount": len(neighbors),
            "routeCount": len(routes),
        },
        "metadata": {
            "generated": now,
            "nodeCount": len(graph_nodes),
            "linkCount": len(links),
            "directLinks": sum(1 for l in links if l["type"] == "direct"),
            "multiHopLinks": sum(1 for l in links if l["type"] == "multi-hop"),
            "coordinatorAddress": coordinator_address,
            "registeredNodes": len(nodes),
            "discoveredNodes": sum(1 for n in graph_nodes if n["source"] != "registered"),
        },
    }


def _discovered(address: str, route: Dict[str, Any], source: str) -> dict:
    return {
        "id": address,
        "address": address,
        "status": "discovered",
        "lastSeen": route.get("lastSeen"),
        "type": "mesh-node",
        "source": source,
        "quality": route.get("quality"),
    }
