"""Coordinator-side node registry and health state machine."""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from ..errors import NodeNotFound, UnknownAction
from ..models import Command, HeartbeatRecord, Node, NodeAction, NodeStatus
from ..probes import AccessControl, NetworkProbe


logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Authoritative table of peer machines.

    Responsibilities:
    - Merge mesh neighbors and overlay peers into nodes
    - Classify node health from reachability probes
    - Ingest registrations and heartbeats
    - Dispatch operator actions

    Every mutation goes through one asyncio lock. Probes run outside the
    lock so a slow probe never stalls heartbeat ingestion; their results
    are applied under the lock against the node's state at that moment.
    Nodes are never removed.
    """

    def __init__(
        self,
        network_probe: NetworkProbe,
        access_control: AccessControl,
        offline_threshold: float = 60.0,
        probe_timeout: float = 30.0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize node registry.

        Args:
            network_probe: Mesh probe used for reachability checks
            access_control: Block list collaborator
            offline_threshold: Seconds without contact before offline
            probe_timeout: Per-probe timeout in seconds
            clock: Time source
        """
        self.network_probe = network_probe
        self.access_control = access_control
        self.offline_threshold = offline_threshold
        self.probe_timeout = probe_timeout
        self._clock = clock

        self.nodes: Dict[str, Node] = {}
        self._pending_commands: Dict[str, List[Command]] = defaultdict(list)
        self._diagnostics: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _find_by_address(self, address: str) -> Optional[Node]:
        for node in self.nodes.values():
            if node.address == address:
                return node
        return None

    def _require(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    async def discover(
        self,
        neighbors: List[Dict[str, Any]],
        peers: List[Dict[str, Any]]
    ) -> List[str]:
        """
        Merge mesh neighbors and overlay peers.

        Unknown neighbor addresses become online nodes. Known ones only get
        their mesh descriptor refreshed. Overlay peers attach to the node
        with the same address; peers without a mesh node are ignored.

        Returns:
            IDs of newly created nodes
        """
        async with self._lock:
            now = self._clock()
            created = []

            for neighbor in neighbors:
                address = neighbor.get("address")
                if not address:
                    continue

                existing = self._find_by_address(address)
                if existing is not None:
                    existing.mesh_info = dict(neighbor)
                    continue

                node = Node(
                    id=address,
                    address=address,
                    status=NodeStatus.ONLINE,
                    last_seen=now,
                    mesh_info=dict(neighbor)
                )
                self.nodes[node.id] = node
                created.append(node.id)
                logger.info(f"New node discovered: {node.id}")

            for peer in peers:
                node = self._find_by_address(peer.get("address", ""))
                if node is not None:
                    node.overlay_info = dict(peer)

            return created

    async def _probe(self, address: str) -> bool:
        return await asyncio.wait_for(
            self.network_probe.is_reachable(address, int(self.probe_timeout * 1000)),
            timeout=self.probe_timeout
        )

    async def refresh_health(self) -> Dict[str, NodeStatus]:
        """
        Probe every node and run the health state machine.

        - reachable: online, last_seen = now
        - unreachable, seen within offline_threshold: warning
        - unreachable, not seen for offline_threshold or longer: offline
        - probe raised or timed out: error

        Blocked nodes are not probed. A failed probe is dropped for a node
        that was heard from after the probe batch started.

        Returns:
            Mapping of node ID to new status for nodes whose status changed
        """
        async with self._lock:
            started = self._clock()
            targets = [
                (node.id, node.address) for node in self.nodes.values()
                if node.status != NodeStatus.BLOCKED
            ]

        results = await asyncio.gather(
            *(self._probe(address) for _, address in targets),
            return_exceptions=True
        )

        changes: Dict[str, NodeStatus] = {}
        async with self._lock:
            now = self._clock()
            for (node_id, _), outcome in zip(targets, results):
                node = self.nodes.get(node_id)
                if node is None or node.status == NodeStatus.BLOCKED:
                    continue
                failed = isinstance(outcome, BaseException) or not outcome
                if failed and node.last_seen > started:
                    logger.debug(f"Discarding stale probe result for node {node_id}")
                    continue

                if isinstance(outcome, BaseException):
                    logger.error(f"Error checking health for node {node_id}: {outcome!r}")
                    new_status = NodeStatus.ERROR
                elif outcome:
                    node.touch(now)
                    new_status = NodeStatus.ONLINE
                elif now - node.last_seen < self.offline_threshold:
                    new_status = NodeStatus.WARNING
                else:
                    new_status = NodeStatus.OFFLINE

                if new_status != node.status:
                    logger.info(f"Node {node_id}: {node.status.value} -> {new_status.value}")
                    changes[node_id] = new_status
                node.status = new_status

        return changes

    async def dispatch_action(self, node_id: str, action: str) -> Any:
        """
        Execute an operator action on a node.

        ``restart`` is advisory: there is no channel that forces a peer to
        restart, so the request is only logged. Use queue_command to hand a
        restart command to a peer that is still heartbeating.

        Raises:
            NodeNotFound: node_id is not registered
            UnknownAction: action is not a NodeAction
        """
        async with self._lock:
            address = self._require(node_id).address

        try:
            node_action = NodeAction(action)
        except ValueError:
            raise UnknownAction(str(action))

        if node_action == NodeAction.PING:
            return bool(await self._probe(address))

        if node_action == NodeAction.RESTART:
            logger.info(f"Restart request for node {node_id}")
            return {"message": "Restart requested", "advisory": True}

        if node_action == NodeAction.DISCONNECT:
            await self.access_control.block(address)
            new_status, message = NodeStatus.BLOCKED, "Node disconnected"
        else:
            await self.access_control.unblock(address)
            new_status, message = NodeStatus.ONLINE, "Node reconnected"

        async with self._lock:
            node = self._require(node_id)
            node.status = new_status
            if new_status == NodeStatus.ONLINE:
                node.touch(self._clock())

        logger.info(f"Node {node_id}: {message.lower()}")
        return {"message": message}

    async def register(self, payload: Dict[str, Any]) -> Node:
        """
        Register a peer, or refresh an existing registration.

        Args:
            payload: Registration body; must carry ``nodeId``

        Returns:
            The registered node
        """
        node_id = payload.get("nodeId")
        if not node_id:
            raise ValueError("nodeId required")

        info = {k: v for k, v in payload.items() if k not in ("nodeId", "address")}
        address = payload.get("address") or node_id

        async with self._lock:
            now = self._clock()
            node = self.nodes.get(node_id)
            if node is None:
                node = Node(id=node_id, address=address, last_seen=now, info=info)
                self.nodes[node_id] = node
            else:
                node.address = address
                node.info = info
                node.touch(now)
                if node.status != NodeStatus.BLOCKED:
                    node.status = NodeStatus.ONLINE

            logger.info(f"Node registered: {node_id}")
            return node.model_copy(deep=True)

    async def ingest_heartbeat(self, node_id: str, record: HeartbeatRecord) -> List[Command]:
        """
        Apply a heartbeat from a registered node.

        The peer's self-reported status replaces whatever the last probe
        decided. A blocked node stays blocked until reconnected, and a peer
        cannot block itself: a reported ``blocked`` leaves the status as is.

        Returns:
            Commands queued for the node, now drained

        Raises:
            NodeNotFound: the node has not registered
        """
        async with self._lock:
            node = self._require(node_id)
            node.touch(self._clock())
            if record.status == NodeStatus.BLOCKED:
                logger.warning(f"Ignoring self-reported blocked status from {node_id}")
            elif node.status != NodeStatus.BLOCKED:
                node.status = record.status
            node.stats = dict(record.system)
            if record.network:
                node.stats["network"] = dict(record.network)

            commands = self._pending_commands.pop(node_id, [])
            logger.debug(f"Heartbeat from {node_id} ({record.status.value})")
            return commands

    async def update_status(self, node_id: str, payload: Dict[str, Any]) -> Node:
        """Store a full status bundle reported by a node."""
        async with self._lock:
            node = self._require(node_id)
            if payload.get("system"):
                node.stats = dict(payload["system"])
            node.info["fullStatus"] = payload
            return node.model_copy(deep=True)

    async def record_diagnostics(self, node_id: str, payload: Dict[str, Any]):
        """Keep the latest diagnostics bundle for a node."""
        async with self._lock:
            self._require(node_id)
            self._diagnostics[node_id] = payload
        logger.info(f"Diagnostics received from {node_id}")

    def get_diagnostics(self, node_id: str) -> Optional[Dict[str, Any]]:
        return self._diagnostics.get(node_id)

    async def queue_command(self, node_id: str, command: Command):
        """Queue a command for delivery in the node's next heartbeat response."""
        async with self._lock:
            self._require(node_id)
            self._pending_commands[node_id].append(command)
        logger.info(f"Queued {command.type} command for {node_id}")

    def get_node(self, node_id: str) -> Optional[Node]:
        node = self.nodes.get(node_id)
        return node.model_copy(deep=True) if node else None

    def list_nodes(self) -> List[Node]:
        """Copies of all nodes."""
        return [node.model_copy(deep=True) for node in self.nodes.values()]

    def get_stats(self) -> dict:
        """Node counts by status."""
        counts = {status.value: 0 for status in NodeStatus}
        for node in self.nodes.values():
            counts[node.status.value] += 1
        return {"total": len(self.nodes), **counts}
