"""
Telemetry tracking of system operations.

Usage:
    from devstack.services.system.tracker import create_tracker

    tracker = create_tracker()
    result = await tracker.track("system", {"event_type": "scale", ...})
    if result != 0:
        ...  # tracking failed; callers log and carry on
"""
import hashlib
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from devstack.core.config import settings

logger = logging.getLogger(__name__)


def calculate_hash(value: str) -> str:
    """SHA-1 hex digest of a string."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


class TrackerProtocol(Protocol):
    """Protocol defining the tracker interface."""

    async def track(self, domain: str, data: Dict[str, Any]) -> int:
        """
        Send one event.

        Returns:
            0 on success, a non-zero code otherwise
        """
        ...


class HttpTracker:
    """
    Tracker posting JSON events to an HTTP collector.

    Never raises for delivery problems: transport errors map to -1 and HTTP
    errors to their status code.
    """

    def __init__(
        self,
        url: str = None,
        api_key: str = None,
        timeout: float = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize HttpTracker.

        Args:
            url: Collector endpoint
            api_key: Optional API key sent as X-API-Key
            timeout: Request timeout in seconds
            client: Preconfigured httpx client (mainly for tests)
        """
        self.url = url or settings.TRACKER_URL
        self.api_key = api_key if api_key is not None else settings.TRACKER_API_KEY
        self.timeout = timeout or settings.TRACKER_TIMEOUT
        self._client = client

    async def track(self, domain: str, data: Dict[str, Any]) -> int:
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        payload = {"domain": domain, "data": data}

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Tracker request to {self.url} failed: {e}")
            return -1

        if response.status_code >= 400:
            return response.status_code
        return 0


class NoOpTracker:
    """No-op tracker used when tracking is disabled."""

    async def track(self, domain: str, data: Dict[str, Any]) -> int:
        logger.debug(f"NoOp: track({domain}, {data.get('event_type')})")
        return 0


def create_tracker() -> TrackerProtocol:
    """
    Create the tracker selected by settings.

    Returns HttpTracker when TRACKER_ENABLED, NoOpTracker otherwise.
    """
    if settings.TRACKER_ENABLED:
        return HttpTracker()

    logger.debug("Tracking disabled, using NoOpTracker")
    return NoOpTracker()
