"""Node agent: identity, coordinator client and heartbeat loop."""

from .client import CoordinatorClient
from .heartbeat import AgentState, HeartbeatClient
from .identity import generate_node_id

__all__ = ["AgentState", "CoordinatorClient", "HeartbeatClient", "generate_node_id"]
