"""Node registry and health state machine."""

from .registry import NodeRegistry

__all__ = ["NodeRegistry"]
