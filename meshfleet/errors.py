"""Error types raised across the coordinator and the node agent."""

from typing import Optional


class MeshFleetError(Exception):
    """Base class for meshfleet errors."""


class NodeNotFound(MeshFleetError):
    """An operation targeted a node id the registry does not know."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found")


class UnknownAction(MeshFleetError):
    """A node action outside ping/disconnect/reconnect/restart."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown action: {action}")


class ProbeFailure(MeshFleetError):
    """A network, overlay or system collaborator call failed."""

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        message = f"{source} probe failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class RegistrationFailure(MeshFleetError):
    """The coordinator could not be reached to register this node."""


class HeartbeatTimeout(MeshFleetError):
    """A heartbeat did not get a response in time."""


class UnknownCommand(MeshFleetError):
    """A coordinator command this agent does not understand."""

    def __init__(self, command_type: str):
        self.command_type = command_type
        super().__init__(f"Unknown command type: {command_type}")


class SessionError(MeshFleetError):
    """An observer broke the realtime protocol."""
