"""
Collaborator interfaces consumed by the coordinator.

Mesh neighbor tables, overlay peers and firewall rules live outside this
package. The coordinator only relies on the async protocols below. The
bundled defaults let a coordinator run on a host without mesh tooling.
"""

import asyncio
import logging
import shutil
from typing import Any, Dict, List, Protocol, Set, runtime_checkable


logger = logging.getLogger(__name__)


@runtime_checkable
class NetworkProbe(Protocol):
    """Mesh-layer read interface.

    Neighbors: ``{"address", "lastSeen", "quality", "iface"}``.
    Routes: ``{"originator", "quality", "nextHop", "iface"}``.
    """

    async def list_neighbors(self) -> List[Dict[str, Any]]: ...

    async def list_routes(self) -> List[Dict[str, Any]]: ...

    async def is_reachable(self, address: str, timeout_ms: int) -> bool: ...

    async def mesh_status(self) -> Dict[str, Any]: ...


@runtime_checkable
class OverlayProbe(Protocol):
    """Overlay network read interface."""

    async def list_peers(self) -> List[Dict[str, Any]]: ...

    async def list_networks(self) -> List[Dict[str, Any]]: ...

    async def overlay_status(self) -> Dict[str, Any]: ...


@runtime_checkable
class AccessControl(Protocol):
    """Block list enforcement plus a periodic security sweep."""

    async def block(self, address: str) -> None: ...

    async def unblock(self, address: str) -> None: ...

    async def sweep(self) -> List[Dict[str, Any]]: ...


class StandaloneNetworkProbe:
    """
    Network probe for hosts without a mesh routing daemon.

    Reports no neighbors or routes and checks reachability with one
    ICMP echo through the system ``ping`` binary.
    """

    def __init__(self, interface: str = "bat0", ping_binary: str = "ping"):
        self.interface = interface
        self.ping_binary = ping_binary

    async def list_neighbors(self) -> List[Dict[str, Any]]:
        return []

    async def list_routes(self) -> List[Dict[str, Any]]:
        return []

    async def is_reachable(self, address: str, timeout_ms: int) -> bool:
        binary = shutil.which(self.ping_binary)
        if not binary:
            logger.debug(f"{self.ping_binary} not available, treating {address} as unreachable")
            return False

        wait_seconds = max(1, int(timeout_ms / 1000))
        process = await asyncio.create_subprocess_exec(
            binary, "-c", "1", "-W", str(wait_seconds), address,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        return await process.wait() == 0

    async def mesh_status(self) -> Dict[str, Any]:
        return {
            "active": False,
            "interface": self.interface,
            "gatewayMode": "unknown",
            "neighborCount": 0,
            "routeCount": 0,
            "neighbors": [],
            "routes": [],
        }


class NullOverlayProbe:
    """Overlay probe for hosts without an overlay client."""

    async def list_peers(self) -> List[Dict[str, Any]]:
        return []

    async def list_networks(self) -> List[Dict[str, Any]]:
        return []

    async def overlay_status(self) -> Dict[str, Any]:
        return {"online": False}


class InMemoryAccessControl:
    """Keeps the block list in memory without touching the firewall."""

    def __init__(self):
        self.blocked: Set[str] = set()

    async def block(self, address: str) -> None:
        self.blocked.add(address)
        logger.info(f"Blocked {address}")

    async def unblock(self, address: str) -> None:
        self.blocked.discard(address)
        logger.info(f"Unblocked {address}")

    async def sweep(self) -> List[Dict[str, Any]]:
        return []
