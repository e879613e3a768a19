"""Blocking HTTP client for the coordinator API."""

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests


logger = logging.getLogger(__name__)


class CoordinatorClient:
    """
    Thin wrapper over the coordinator HTTP API.

    Every call raises ``requests.RequestException`` (including
    ``HTTPError`` for non-2xx answers) so callers decide how to react.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        """
        Initialize coordinator client.

        Args:
            base_url: Coordinator base URL (``http://host:port``)
            timeout: Default request timeout in seconds
            session: requests session to reuse
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, timeout: Optional[float] = None, **params) -> Any:
        response = self.session.get(
            f"{self.base_url}{path}",
            params=params or None,
            timeout=timeout or self.timeout
        )
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        response = self.session.post(
            f"{self.base_url}{path}",
            json=payload,
            timeout=timeout or self.timeout
        )
        response.raise_for_status()
        return response.json()

    def get_status(self, timeout: Optional[float] = None) -> dict:
        return self._get("/status", timeout=timeout)

    def get_nodes(self) -> List[dict]:
        return self._get("/nodes")

    def get_stats(self) -> dict:
        return self._get("/stats")

    def get_performance(self, minutes: float = 30) -> Optional[dict]:
        return self._get("/stats/performance", minutes=minutes)

    def get_topology(self) -> dict:
        return self._get("/topology")

    def register(self, payload: Dict[str, Any]) -> dict:
        return self._post("/nodes/register", payload)

    def send_heartbeat(self, node_id: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> dict:
        return self._post(f"/nodes/{node_id}/heartbeat", payload, timeout=timeout)

    def send_status(self, node_id: str, payload: Dict[str, Any]) -> dict:
        return self._post(f"/nodes/{node_id}/status", payload)

    def send_diagnostics(self, node_id: str, payload: Dict[str, Any]) -> dict:
        return self._post(f"/nodes/{node_id}/diagnostics", payload)

    def node_action(self, node_id: str, action: str) -> dict:
        return self._post(f"/nodes/{node_id}/action", {"action": action})

    def queue_command(self, node_id: str, command_type: str, config: Optional[Dict[str, Any]] = None) -> dict:
        return self._post(f"/nodes/{node_id}/commands", {"type": command_type, "config": config or {}})

    def close(self):
        self.session.close()

    @classmethod
    def probe(
        cls,
        candidates: Iterable[str],
        timeout: float = 5.0,
        session: Optional[requests.Session] = None
    ) -> Optional[str]:
        """
        Find a coordinator among candidate base URLs.

        A candidate qualifies when ``GET /status`` answers with a
        ``coordinator`` object.

        Returns:
            The first qualifying base URL, or None
        """
        for url in candidates:
            client = cls(url, timeout=timeout, session=session)
            try:
                status = client.get_status()
            except (requests.RequestException, ValueError) as e:
                logger.debug(f"No coordinator at {url}: {e}")
                continue

            if isinstance(status, dict) and isinstance(status.get("coordinator"), dict):
                logger.info(f"Coordinator found at {url}")
                return client.base_url
        return None
