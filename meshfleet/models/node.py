"""Node registry models."""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class NodeStatus(str, Enum):
    """Health classification of a peer machine."""
    ONLINE = "online"
    WARNING = "warning"
    OFFLINE = "offline"
    ERROR = "error"
    BLOCKED = "blocked"


class NodeAction(str, Enum):
    """Operator actions on a node."""
    PING = "ping"
    DISCONNECT = "disconnect"
    RECONNECT = "reconnect"
    RESTART = "restart"


class CommandType(str, Enum):
    """Commands a coordinator can hand back in a heartbeat response."""
    RESTART = "restart"
    UPDATE_CONFIG = "update_config"
    RUN_DIAGNOSTICS = "run_diagnostics"


class Node(BaseModel):
    """
    A peer machine known to the coordinator.

    Serialized with camelCase keys (``lastSeen``, ``meshInfo``, ...) for
    the HTTP and realtime surfaces.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Stable node identifier")
    address: str = Field(..., description="Reachability address on the mesh")
    status: NodeStatus = Field(default=NodeStatus.ONLINE, description="Health status")
    last_seen: float = Field(
        default_factory=time.time,
        alias="lastSeen",
        description="Unix timestamp of last confirmed reachability or heartbeat"
    )
    mesh_info: Optional[Dict[str, Any]] = Field(
        None,
        alias="meshInfo",
        description="Mesh-layer neighbor descriptor"
    )
    overlay_info: Optional[Dict[str, Any]] = Field(
        None,
        alias="overlayInfo",
        description="Overlay-layer peer descriptor"
    )
    stats: Dict[str, Any] = Field(
        default_factory=dict,
        description="Last reported telemetry"
    )
    info: Dict[str, Any] = Field(
        default_factory=dict,
        description="Registration payload (hostname, platform, hardware)"
    )

    def touch(self, when: float):
        """Advance last_seen; it never moves backward."""
        if when > self.last_seen:
            self.last_seen = when

    def to_wire(self) -> dict:
        """Serialize for JSON transport."""
        return self.model_dump(mode="json", by_alias=True)


class HeartbeatRecord(BaseModel):
    """Heartbeat payload sent by a peer."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    node_id: Optional[str] = Field(None, alias="nodeId", description="Sender node ID")
    timestamp: float = Field(
        default_factory=time.time,
        description="Unix timestamp when the heartbeat was created"
    )
    status: NodeStatus = Field(default=NodeStatus.ONLINE, description="Self-reported status")
    system: Dict[str, Any] = Field(default_factory=dict, description="System metrics")
    network: Dict[str, Any] = Field(
        default_factory=dict,
        description="Mesh and overlay sub-status"
    )


class Command(BaseModel):
    """A command delivered to a peer in a heartbeat response."""
    type: str = Field(..., description="Command type")
    config: Dict[str, Any] = Field(default_factory=dict, description="Command arguments")
