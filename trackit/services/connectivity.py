"""Connectivity probe feeding the orchestrator's online flag."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Checks whether the API host is reachable."""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.transport = transport
        self.last_result: Optional[bool] = None

    async def check(self) -> bool:
        """Any HTTP response means online; a transport failure means offline."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                await client.get(f"{self.base_url}/")
            online = True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity check failed: {e!r}")
            online = False

        if online != self.last_result:
            logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self.last_result = online
        return online
