"""Observer session state."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Set

import websockets

from .protocol import HubMessage


logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    """One connected observer."""
    websocket: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    subscriptions: Set[str] = field(default_factory=set)
    closed: bool = False

    async def send(self, message: HubMessage):
        """
        Send a message to the observer.

        Raises:
            ConnectionError: the websocket is closed
        """
        if self.closed:
            raise ConnectionError(f"Session {self.id} is closed")
        try:
            await self.websocket.send(message.to_json())
        except websockets.exceptions.ConnectionClosed:
            self.closed = True
            raise ConnectionError(f"Session {self.id} connection closed")

    async def close(self, code: int = 1000, reason: str = ""):
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.error(f"Error closing session {self.id}: {e}")

    def touch(self, now: float):
        self.last_activity = now

    def is_idle(self, now: float, timeout: float) -> bool:
        return now - self.last_activity > timeout

    def describe(self) -> dict:
        return {
            "id": self.id,
            "connectedAt": self.connected_at,
            "lastActivity": self.last_activity,
            "subscriptions": sorted(self.subscriptions),
        }
