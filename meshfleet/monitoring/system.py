"""Host telemetry via psutil."""

import logging
import os
import platform
import socket
import time
from typing import Any, Dict

import psutil


logger = logging.getLogger(__name__)


def collect_system_stats() -> Dict[str, Any]:
    """CPU, memory, load, temperature and disk usage."""
    cpu_times = psutil.cpu_times_percent(interval=None)
    memory = psutil.virtual_memory()
    load1, load5, load15 = psutil.getloadavg()

    return {
        "cpu": {
            "usage": psutil.cpu_percent(interval=None),
            "user": cpu_times.user,
            "system": cpu_times.system,
            "idle": cpu_times.idle,
            "cores": psutil.cpu_count(),
        },
        "memory": {
            "total": memory.total,
            "used": memory.used,
            "free": memory.free,
            "available": memory.available,
            "usage": memory.percent,
        },
        "load": {"avg1": load1, "avg5": load5, "avg15": load15},
        "temperature": _cpu_temperature(),
        "disk": _disk_usage(),
        "uptime": time.time() - psutil.boot_time(),
    }


def collect_network_stats() -> Dict[str, Any]:
    """Per-interface addresses, link state and counters."""
    addresses = psutil.net_if_addrs()
    link_stats = psutil.net_if_stats()
    counters = psutil.net_io_counters(pernic=True)

    interfaces = {}
    for name, addrs in addresses.items():
        link = link_stats.get(name)
        io = counters.get(name)
        interfaces[name] = {
            "name": name,
            "mac": _address_of(addrs, psutil.AF_LINK),
            "ip4": _address_of(addrs, socket.AF_INET),
            "ip6": _address_of(addrs, socket.AF_INET6),
            "operstate": "up" if link and link.isup else "down",
            "mtu": link.mtu if link else None,
            "speed": link.speed if link else None,
            "stats": {
                "rxBytes": io.bytes_recv,
                "txBytes": io.bytes_sent,
                "rxPackets": io.packets_recv,
                "txPackets": io.packets_sent,
                "rxErrors": io.errin,
                "txErrors": io.errout,
                "rxDropped": io.dropin,
                "txDropped": io.dropout,
            } if io else None,
        }

    return {"interfaces": interfaces}


def collect_node_info() -> Dict[str, Any]:
    """Best-effort hardware snapshot sent when a node registers."""
    info: Dict[str, Any] = {
        "hostname": socket.gethostname(),
        "platform": platform.system().lower(),
        "arch": platform.machine(),
        "timestamp": time.time(),
    }
    try:
        memory = psutil.virtual_memory()
        info.update({
            "uptime": time.time() - psutil.boot_time(),
            "loadavg": list(os.getloadavg()),
            "cpu": {
                "brand": platform.processor(),
                "cores": psutil.cpu_count(),
                "speed": _cpu_speed(),
            },
            "memory": {
                "total": memory.total,
                "free": memory.free,
                "used": memory.used,
            },
            "network": [
                iface for iface in collect_network_stats()["interfaces"].values()
                if iface["name"] != "lo"
            ],
        })
    except Exception as e:
        logger.error(f"Failed to collect node info: {e}")
    return info


def _address_of(addrs, family) -> str:
    for addr in addrs:
        if addr.family == family:
            return addr.address
    return ""


def _cpu_temperature() -> Dict[str, float]:
    sensors = getattr(psutil, "sensors_temperatures", None)
    if sensors is None:
        return {"cpu": 0, "max": 0}
    readings = [t.current for entries in sensors().values() for t in entries]
    if not readings:
        return {"cpu": 0, "max": 0}
    return {"cpu": readings[0], "max": max(readings)}


def _cpu_speed() -> float:
    freq = psutil.cpu_freq()
    return freq.current if freq else 0


def _disk_usage() -> list:
    disks = []
    for part in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except (PermissionError, OSError):
            continue
        disks.append({
            "filesystem": part.device,
            "mount": part.mountpoint,
            "size": usage.total,
            "used": usage.used,
            "available": usage.free,
            "usage": usage.percent,
        })
    return disks
