"""
HTTP health probe used while waiting for a child to come up.
"""

import logging

import httpx

from shipwright.config import LIVENESS_PATH

logger = logging.getLogger(__name__)


class HealthProbe:
    """Polls one health endpoint; any transport error counts as not healthy."""

    def __init__(
        self,
        port: int,
        *,
        host: str = "127.0.0.1",
        path: str = LIVENESS_PATH,
        timeout: float = 1.0,
        client: httpx.Client | None = None,
    ):
        self._url = f"http://{host}:{port}{path}"
        self._timeout = timeout
        # Local probes must never be routed through an HTTP proxy
        self._client = client or httpx.Client(trust_env=False)
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return self._url

    def check(self) -> bool:
        """Return True if the endpoint answered 200 within the timeout."""
        try:
            response = self._client.get(self._url, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Probe {self._url} failed: {e}")
            return False
        return response.status_code == 200

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
