"""Contracts for the mesh, overlay and access-control collaborators."""

from .base import (
    NetworkProbe,
    OverlayProbe,
    AccessControl,
    StandaloneNetworkProbe,
    NullOverlayProbe,
    InMemoryAccessControl,
)

__all__ = [
    "NetworkProbe",
    "OverlayProbe",
    "AccessControl",
    "StandaloneNetworkProbe",
    "NullOverlayProbe",
    "InMemoryAccessControl",
]
