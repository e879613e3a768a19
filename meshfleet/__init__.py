"""meshfleet - coordinator and node agent for mesh-connected machines."""

__version__ = "0.1.0"
