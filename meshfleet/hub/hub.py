"""Realtime fan-out of registry, stats and topology to observers."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from pydantic import ValidationError

from ..errors import MeshFleetError, SessionError
from ..monitoring import StatsAggregator
from ..probes import NetworkProbe
from ..registry import NodeRegistry
from .protocol import (
    ClientEvent,
    HubMessage,
    NodeActionRequest,
    PerformanceRequest,
    ServerEvent,
    SubscriptionRequest,
    create_message,
)
from .session import ClientSession
from .topology import build_topology


logger = logging.getLogger(__name__)


class RealtimeHub:
    """
    Websocket session manager and publish/subscribe fan-out.

    Observers get one bootstrap bundle on connect, can pull individual
    views, receive broadcasts, subscribe to named streams and relay node
    actions through the action handler.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        stats: StatsAggregator,
        network_probe: NetworkProbe,
        status_provider: Callable[[], Awaitable[dict]],
        coordinator_address: str,
        action_handler: Optional[Callable[[str, str], Awaitable[Any]]] = None,
        idle_timeout: float = 30 * 60.0,
        performance_minutes: float = 30,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize realtime hub.

        Args:
            registry: Node registry
            stats: Stats aggregator
            network_probe: Mesh probe (gateway status and topology)
            status_provider: Coroutine function returning coordinator status
            coordinator_address: Coordinator mesh address for the topology
            action_handler: Coroutine function running a node action
                (registry dispatch if None)
            idle_timeout: Seconds of inactivity before a session is reaped
            performance_minutes: Default performance window
            clock: Time source
        """
        self.registry = registry
        self.stats = stats
        self.network_probe = network_probe
        self.status_provider = status_provider
        self.coordinator_address = coordinator_address
        self.action_handler = action_handler or registry.dispatch_action
        self.idle_timeout = idle_timeout
        self.performance_minutes = performance_minutes
        self._clock = clock

        self.sessions: Dict[str, ClientSession] = {}
        self._pending: Dict[str, List[HubMessage]] = {}
        self._server = None

        self._requests: Dict[ClientEvent, tuple] = {
            ClientEvent.REQUEST_STATUS: (ServerEvent.STATUS_UPDATE, self.get_status),
            ClientEvent.REQUEST_NODES: (ServerEvent.NODES_UPDATE, self.get_nodes),
            ClientEvent.REQUEST_STATS: (ServerEvent.STATS_UPDATE, self.get_stats),
            ClientEvent.REQUEST_TOPOLOGY: (ServerEvent.TOPOLOGY_UPDATE, self.get_topology),
            ClientEvent.REQUEST_GATEWAY_STATUS: (ServerEvent.GATEWAY_STATUS, self.get_gateway_status),
        }

    # Views

    async def get_status(self) -> dict:
        status = await self.status_provider()
        status.setdefault("coordinator", {})["clientCount"] = len(self.sessions)
        return status

    async def get_nodes(self) -> List[dict]:
        return [node.to_wire() for node in self.registry.list_nodes()]

    async def get_node_counts(self) -> dict:
        return self.registry.get_stats()

    async def get_stats(self) -> dict:
        return self.stats.latest().model_dump(mode="json")

    async def get_performance(self, minutes: Optional[float] = None) -> Optional[dict]:
        window = self.stats.performance_window(minutes or self.performance_minutes)
        return window.model_dump(mode="json", by_alias=True) if window else None

    async def get_topology(self) -> dict:
        try:
            mesh_status = await self.network_probe.mesh_status()
        except Exception as e:
            logger.error(f"Error getting mesh status for topology: {e}")
            mesh_status = {}
        return build_topology(
            self.registry.list_nodes(),
            mesh_status,
            self.coordinator_address,
            self._clock()
        )

    async def get_gateway_status(self) -> dict:
        try:
            status = dict(await self.network_probe.mesh_status())
        except Exception as e:
            logger.error(f"Error getting gateway status: {e}")
            status = {"active": False, "error": str(e)}
        status["timestamp"] = self._clock()
        return status

    async def build_bootstrap(self) -> dict:
        """
        Assemble the full initial view.

        Every field is always present; a view that fails to build is sent
        as an empty value rather than left out.
        """
        fallbacks = {"status": {}, "nodes": [], "stats": {}, "topology": {}, "gateway": {}}
        builders = {
            "status": self.get_status,
            "nodes": self.get_nodes,
            "stats": self.get_stats,
            "topology": self.get_topology,
            "gateway": self.get_gateway_status,
        }
        results = await asyncio.gather(
            *(builder() for builder in builders.values()),
            return_exceptions=True
        )

        bundle = {}
        for name, result in zip(builders, results):
            if isinstance(result, Exception):
                logger.error(f"Error building bootstrap {name}: {result}")
                result = fallbacks[name]
            bundle[name] = result
        return bundle

    # Sessions

    async def handler(self, websocket):
        """Websocket connection handler."""
        session = await self.open_session(websocket)
        try:
            async for raw in websocket:
                try:
                    await self.handle_message(session, raw)
                except SessionError as e:
                    logger.warning(f"Protocol violation from {session.id}: {e}")
                    try:
                        await session.send(create_message(ServerEvent.ERROR, {"message": str(e)}))
                    except ConnectionError:
                        pass
                    await session.close(code=1008, reason=str(e)[:120])
                    break
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.close_session(session.id)

    async def open_session(self, websocket) -> ClientSession:
        """
        Create a session and send its bootstrap bundle.

        The bundle is always the first message a session receives. Global
        broadcasts made while it is being built are queued and sent right
        after it, then the session joins the broadcast set.
        """
        now = self._clock()
        session = ClientSession(websocket=websocket, connected_at=now, last_activity=now)
        backlog: List[HubMessage] = []
        self._pending[session.id] = backlog
        try:
            bundle = await self.build_bootstrap()
            await session.send(create_message(ServerEvent.BOOTSTRAP, bundle))
            while backlog:
                await session.send(backlog.pop(0))
        except ConnectionError:
            logger.debug(f"Session {session.id} closed before bootstrap")
            return session
        finally:
            self._pending.pop(session.id, None)

        self.sessions[session.id] = session
        logger.info(f"Client connected: {session.id}")
        return session

    def close_session(self, session_id: str):
        if self.sessions.pop(session_id, None) is not None:
            logger.info(f"Client disconnected: {session_id}")

    async def handle_message(self, session: ClientSession, raw: Any):
        """
        Handle one observer message.

        Raises:
            SessionError: the message breaks the protocol
        """
        try:
            message = HubMessage.from_json(raw)
        except ValidationError as e:
            raise SessionError(f"Malformed message: {e.errors()[0]['msg']}")

        try:
            event = ClientEvent(message.event)
        except ValueError:
            raise SessionError(f"Unknown event: {message.event}")

        session.touch(self._clock())

        if event in self._requests:
            reply_event, builder = self._requests[event]
            await self._reply(session, reply_event, builder)
        elif event == ClientEvent.REQUEST_PERFORMANCE:
            request = _parse(PerformanceRequest, message.data or {})
            await self._reply(
                session,
                ServerEvent.PERFORMANCE_UPDATE,
                lambda: self.get_performance(request.minutes)
            )
        elif event == ClientEvent.NODE_ACTION:
            await self._relay_action(session, _parse(NodeActionRequest, message.data))
        elif event == ClientEvent.SUBSCRIBE:
            stream = _parse(SubscriptionRequest, message.data).stream
            session.subscriptions.add(stream)
            logger.debug(f"Client {session.id} subscribed to {stream}")
        elif event == ClientEvent.UNSUBSCRIBE:
            stream = _parse(SubscriptionRequest, message.data).stream
            session.subscriptions.discard(stream)
            logger.debug(f"Client {session.id} unsubscribed from {stream}")

    async def _reply(self, session: ClientSession, event: ServerEvent, builder):
        try:
            data = await builder()
        except Exception as e:
            logger.error(f"Error building {event.value}: {e}")
            await self._send(session, create_message(ServerEvent.ERROR, {"message": f"Failed to get {event.value}"}))
            return
        await self._send(session, create_message(event, data))

    async def _relay_action(self, session: ClientSession, request: NodeActionRequest):
        result = {"nodeId": request.node_id, "action": request.action}
        try:
            result["result"] = await self.action_handler(request.node_id, request.action)
            result["success"] = True
        except MeshFleetError as e:
            result.update(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Error handling node action {request.action} on {request.node_id}: {e}")
            result.update(success=False, error=str(e))

        await self._send(session, create_message(ServerEvent.NODE_ACTION_RESULT, result))

    async def _send(self, session: ClientSession, message: HubMessage):
        try:
            await session.send(message)
        except ConnectionError:
            self.close_session(session.id)

    # Broadcasts

    async def broadcast(self, event: ServerEvent, data: Any = None, stream: Optional[str] = None,
                        global_delivery: bool = True) -> int:
        """
        Send an event to every session, and a stream-tagged copy to the
        sessions subscribed to ``stream``.

        Returns:
            Number of messages delivered
        """
        deliveries = []
        if global_delivery:
            message = create_message(event, data)
            for backlog in self._pending.values():
                backlog.append(message)
            deliveries.extend((s, message) for s in self.sessions.values())
        if stream:
            message = create_message(event, data, stream=stream)
            deliveries.extend(
                (s, message) for s in self.sessions.values() if stream in s.subscriptions
            )

        results = await asyncio.gather(
            *(session.send(message) for session, message in deliveries),
            return_exceptions=True
        )

        delivered = 0
        for (session, _), result in zip(deliveries, results):
            if isinstance(result, Exception):
                logger.debug(f"Dropping session {session.id}: {result}")
                self.close_session(session.id)
            else:
                delivered += 1
        return delivered

    async def broadcast_nodes(self):
        await self.broadcast(ServerEvent.NODES_UPDATE, await self.get_nodes(), stream="nodes")

    async def broadcast_stats(self, snapshot=None):
        snapshot = snapshot or self.stats.latest()
        await self.broadcast(ServerEvent.STATS_UPDATE, snapshot.model_dump(mode="json"), stream="stats")

    async def broadcast_topology(self):
        await self.broadcast(ServerEvent.TOPOLOGY_UPDATE, await self.get_topology(), stream="topology")

    async def broadcast_performance(self):
        performance = await self.get_performance()
        await self.broadcast(ServerEvent.PERFORMANCE_UPDATE, performance,
                             stream="performance", global_delivery=False)

    async def broadcast_status(self):
        await self.broadcast(ServerEvent.STATUS_UPDATE, await self.get_status())

    async def broadcast_gateway_status(self):
        await self.broadcast(ServerEvent.GATEWAY_STATUS, await self.get_gateway_status())

    async def broadcast_node_status(self, node_id: str, status: str):
        await self.broadcast(
            ServerEvent.NODE_STATUS_CHANGE,
            {"nodeId": node_id, "status": status, "timestamp": self._clock()}
        )

    async def broadcast_alert(self, alert: dict):
        await self.broadcast(ServerEvent.ALERT, {**alert, "timestamp": self._clock()})
        logger.info(f"Alert broadcasted: {alert.get('type')} - {alert.get('message')}")

    async def broadcast_security_alert(self, alert: dict):
        payload = {**alert, "timestamp": self._clock()}
        payload.setdefault("severity", "warning")
        await self.broadcast(ServerEvent.SECURITY_ALERT, payload)
        logger.warning(f"Security alert: {alert.get('message')}")

    # Lifecycle

    async def reap_idle(self) -> List[str]:
        """Disconnect sessions idle for longer than idle_timeout."""
        now = self._clock()
        idle = [s for s in self.sessions.values() if s.is_idle(now, self.idle_timeout)]
        for session in idle:
            logger.info(f"Disconnecting inactive client: {session.id}")
            self.close_session(session.id)
            await session.close(code=1001, reason="idle timeout")
        return [s.id for s in idle]

    def get_client_info(self) -> dict:
        return {
            "count": len(self.sessions),
            "clients": [s.describe() for s in self.sessions.values()],
        }

    async def start(self, host: str, port: int):
        """Start the websocket server."""
        self._server = await websockets.serve(self.handler, host, port)
        logger.info(f"Realtime hub listening on ws://{host}:{port}")

    async def shutdown(self):
        """Notify every session, close them, then stop the server."""
        logger.info("Shutting down realtime hub...")
        await self.broadcast(
            ServerEvent.SERVER_SHUTDOWN,
            {"message": "Server is shutting down", "timestamp": self._clock()}
        )

        sessions = list(self.sessions.values())
        self.sessions.clear()
        await asyncio.gather(
            *(s.close(code=1001, reason="server shutdown") for s in sessions),
            return_exceptions=True
        )

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Realtime hub shutdown complete")


def _parse(model, data):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise SessionError(f"Invalid {model.__name__} payload: {e.errors()[0]['msg']}")
