"""Coordinator service and its HTTP API."""

from .api import CoordinatorAPI
from .service import Coordinator

__all__ = ["Coordinator", "CoordinatorAPI"]
