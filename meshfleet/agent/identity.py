"""Stable node identity."""

import hashlib
import logging
import socket

import psutil


logger = logging.getLogger(__name__)

_NULL_MAC = "00:00:00:00:00:00"


def primary_mac() -> str:
    """MAC of the first non-loopback interface, or the null MAC."""
    try:
        interfaces = psutil.net_if_addrs()
    except Exception as e:
        logger.warning(f"Could not list network interfaces: {e}")
        return _NULL_MAC

    for name, addrs in interfaces.items():
        if name == "lo" or name.startswith("lo"):
            continue
        for addr in addrs:
            if addr.family == psutil.AF_LINK and addr.address and addr.address != _NULL_MAC:
                return addr.address.lower().replace("-", ":")
    return _NULL_MAC


def generate_node_id(hostname: str = None, mac: str = None) -> str:
    """
    Derive a node ID that survives restarts.

    First 16 hex characters of sha256("<hostname>-<mac>").
    """
    hostname = hostname or socket.gethostname()
    mac = mac or primary_mac()
    return hashlib.sha256(f"{hostname}-{mac}".encode()).hexdigest()[:16]
