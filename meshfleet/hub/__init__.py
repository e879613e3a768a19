"""Realtime observer hub."""

from .protocol import ClientEvent, ServerEvent, HubMessage
from .session import ClientSession
from .hub import RealtimeHub
from .topology import build_topology

__all__ = [
    "ClientEvent",
    "ServerEvent",
    "HubMessage",
    "ClientSession",
    "RealtimeHub",
    "build_topology",
]
