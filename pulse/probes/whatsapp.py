"""
Pulse Probes - WhatsApp gateway (Evolution API).

Shallow: gateway URL and API key configured.
Deep: gateway reachable, then per-channel connection status from
an injected provider. Any disconnected or degraded channel makes
the probe unhealthy.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from core.clock import ClockProtocol
from pulse.http_client import HttpClient, timeout
from pulse.probes.base import CheckOutcome, HealthProbe


# Returns channel dicts with at least `status`; may include id,
# name, phoneNumber and lastHealthCheck.
ChannelStatusProvider = Callable[[], Awaitable[List[Dict[str, Any]]]]


class WhatsAppGatewayProbe(HealthProbe):
    """Messaging gateway probe."""

    def __init__(
        self,
        api_url: Optional[str],
        api_key: Optional[str],
        deep: bool,
        http: Optional[HttpClient] = None,
        channel_provider: Optional[ChannelStatusProvider] = None,
        request_timeout_seconds: float = 5.0,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("whatsapp", deep, timeout_seconds, clock)
        self._api_url = api_url.rstrip("/") if api_url else None
        self._api_key = api_key
        self._http = http or HttpClient()
        self._channel_provider = channel_provider
        self._request_timeout = request_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self._api_url and self._api_key)

    async def _check(self) -> CheckOutcome:
        if not self.is_deep:
            details = {
                "evolutionUrl": "configured" if self._api_url else "missing",
                "apiKey": "configured" if self._api_key else "missing",
            }
            if self.configured:
                return CheckOutcome(True, "Evolution API configured", details)
            return CheckOutcome(False, "Evolution API not configured", details)

        if not self.configured:
            return CheckOutcome(False, "Evolution API not configured")

        if not await self._gateway_reachable():
            return CheckOutcome(False, "Evolution API unreachable")

        channels = await self._channel_provider() if self._channel_provider else []
        return summarize_channels(channels)

    async def _gateway_reachable(self) -> bool:
        session = await self._http.get_session()
        try:
            async with session.get(
                f"{self._api_url}/",
                headers={"apikey": self._api_key},
                timeout=timeout(self._request_timeout),
            ) as response:
                return 200 <= response.status < 300
        except aiohttp.ClientError:
            return False


def summarize_channels(channels: List[Dict[str, Any]]) -> CheckOutcome:
    by_status: Dict[str, int] = {}
    for channel in channels:
        status = str(channel.get("status", "unknown"))
        by_status[status] = by_status.get(status, 0) + 1

    total = len(channels)
    connected = by_status.get("connected", 0)
    troubled = by_status.get("disconnected", 0) + by_status.get("degraded", 0)

    healthy = True
    if total == 0:
        message = "No channels configured"
    elif troubled:
        healthy = False
        message = f"{connected}/{total} channels connected"
    elif connected == total:
        message = f"All {total} channels connected"
    else:
        message = f"{total} channels"

    return CheckOutcome(
        healthy,
        message,
        {
            "total": total,
            "byStatus": by_status,
            "evolutionHealthy": True,
            "channels": channels,
        },
    )
