"""Realtime event protocol between the coordinator and observers."""

import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientEvent(str, Enum):
    """Events sent by observers."""
    REQUEST_STATUS = "request-status"
    REQUEST_NODES = "request-nodes"
    REQUEST_STATS = "request-stats"
    REQUEST_PERFORMANCE = "request-performance"
    REQUEST_TOPOLOGY = "request-topology"
    REQUEST_GATEWAY_STATUS = "request-gateway-status"
    NODE_ACTION = "node-action"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


class ServerEvent(str, Enum):
    """Events pushed to observers."""
    BOOTSTRAP = "bootstrap"
    STATUS_UPDATE = "status-update"
    NODES_UPDATE = "nodes-update"
    STATS_UPDATE = "stats-update"
    PERFORMANCE_UPDATE = "performance-update"
    TOPOLOGY_UPDATE = "topology-update"
    GATEWAY_STATUS = "gateway-status"
    NODE_STATUS_CHANGE = "node-status-change"
    ALERT = "alert"
    SECURITY_ALERT = "security-alert"
    NODE_ACTION_RESULT = "node-action-result"
    SERVER_SHUTDOWN = "server-shutdown"
    ERROR = "error"


class HubMessage(BaseModel):
    """
    Envelope for every realtime message.

    ``stream`` is set on the copy delivered to subscribers of a named
    stream, so observers can tell it apart from the global broadcast.
    """
    event: str = Field(..., description="Event name")
    data: Any = Field(None, description="Event payload")
    stream: Optional[str] = Field(None, description="Stream the message was routed through")
    timestamp: float = Field(default_factory=time.time, description="Send time")

    def to_json(self) -> str:
        """Serialize to JSON."""
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> "HubMessage":
        """Deserialize from JSON."""
        return cls.model_validate_json(data)


class NodeActionRequest(BaseModel):
    """Payload of a node-action event."""
    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(..., alias="nodeId", min_length=1)
    action: str = Field(..., min_length=1)


class SubscriptionRequest(BaseModel):
    """Payload of subscribe/unsubscribe events."""
    stream: str = Field(..., min_length=1)


class PerformanceRequest(BaseModel):
    """Optional payload of request-performance."""
    minutes: float = Field(default=30, gt=0)


def create_message(event: ServerEvent, data: Any = None, stream: Optional[str] = None) -> HubMessage:
    """Create a server-to-observer message."""
    return HubMessage(event=event.value, data=data, stream=stream)
