"""
Pulse - Shared outbound HTTP session.

Probes and the WhatsApp channel share one lazily created
`aiohttp.ClientSession`. Every request passes its own
`ClientTimeout`.
"""

import logging
from typing import Optional

import aiohttp


logger = logging.getLogger(__name__)


class HttpClient:
    """Owner of the outbound aiohttp session."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Outbound HTTP session closed")
        self._session = None


def timeout(seconds: float) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(total=seconds)
