"""
Settings for the coordinator and the node agent.

Values come from keyword arguments, environment variables or a local
``.env`` file, in that order of precedence.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CoordinatorSettings(BaseSettings):
    """Coordinator settings (``MESHFLEET_*`` environment variables)."""

    model_config = SettingsConfigDict(
        env_prefix="MESHFLEET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    realtime_port: int = 3001
    coordinator_address: str = "192.168.100.1"

    # Periodic cycles (seconds)
    discovery_interval: float = 10.0
    stats_interval: float = 5.0
    security_interval: float = 30.0
    reap_interval: float = 60.0
    cycle_timeout: float = 30.0

    # Health state machine
    offline_threshold: float = 60.0
    probe_timeout: float = 30.0

    # Realtime sessions
    idle_timeout: float = 30 * 60.0
    shutdown_timeout: float = 5.0

    # Stats
    history_size: int = 100
    performance_minutes: int = 30

    # HTTP bridge into the event loop
    request_timeout: float = 35.0

    log_level: str = "INFO"


class NodeSettings(BaseSettings):
    """Node agent settings (``MESHFLEET_NODE_*`` environment variables)."""

    model_config = SettingsConfigDict(
        env_prefix="MESHFLEET_NODE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    coordinator_candidates: List[str] = ["192.168.100.1", "10.147.0.1", "192.168.1.1"]
    coordinator_port: int = 3000
    node_id: Optional[str] = None
    advertise_address: Optional[str] = None

    heartbeat_interval: float = 30.0
    max_failures: int = 5
    discovery_timeout: float = 5.0
    request_timeout: float = 10.0
    heartbeat_timeout: float = 5.0
    shutdown_timeout: float = 5.0
    diagnostics_target: str = "8.8.8.8"

    log_level: str = "INFO"

    def candidate_urls(self) -> List[str]:
        """Candidate coordinator base URLs in probe order."""
        urls = []
        for candidate in self.coordinator_candidates:
            if candidate.startswith(("http://", "https://")):
                urls.append(candidate.rstrip("/"))
            else:
                urls.append(f"http://{candidate}:{self.coordinator_port}")
        return urls
