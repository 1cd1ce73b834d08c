"""
Pulse Probes - OpenRouter (LLM provider).

============================================================
CHECKS
============================================================
Shallow: API key present. No network access.
Deep: concurrent `GET /models` (connectivity) and
`GET /auth/key` (credits, usage, free tier, rate limit), each
with its own timeout. A missing key fails without any request.

============================================================
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from core.clock import ClockProtocol
from pulse.http_client import HttpClient, timeout
from pulse.probes.base import CheckOutcome, HealthProbe, describe_error


NOT_CONFIGURED = "OPENROUTER_API_KEY not configured"


def credits_from_key_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Derive credit, usage and account details from `/auth/key` data."""
    usage = float(data.get("usage") or 0)
    limit = data.get("limit")

    details: Dict[str, Any] = {
        "credits": {
            "remaining": (float(limit) - usage) if limit is not None else None,
            "limit": limit,
            "percentUsed": (usage / float(limit) * 100) if limit else None,
        },
        "usage": {"total": usage},
    }
    if "is_free_tier" in data:
        details["isFreeTier"] = bool(data["is_free_tier"])
    if data.get("rate_limit") is not None:
        details["rateLimit"] = data["rate_limit"]
    return details


class OpenRouterProbe(HealthProbe):
    """LLM provider probe."""

    def __init__(
        self,
        api_key: Optional[str],
        deep: bool,
        http: Optional[HttpClient] = None,
        base_url: str = "https://openrouter.ai/api/v1",
        default_model: str = "",
        request_timeout_seconds: float = 10.0,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("llm", deep, timeout_seconds, clock)
        self._api_key = api_key
        self._http = http or HttpClient()
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._request_timeout = request_timeout_seconds

    def _base_details(self) -> Dict[str, Any]:
        return {
            "baseUrl": self._base_url,
            "defaultModel": self._default_model,
            "configured": bool(self._api_key),
        }

    async def _check(self) -> CheckOutcome:
        details = self._base_details()
        if not self._api_key:
            return CheckOutcome(False, NOT_CONFIGURED, details)

        if not self.is_deep:
            return CheckOutcome(True, details=details)

        try:
            (models_status, _), (key_status, key_body) = await asyncio.gather(
                self._get("/models"),
                self._get("/auth/key", parse_json=True),
            )
        except asyncio.TimeoutError:
            return CheckOutcome(False, f"OpenRouter timed out after {self._request_timeout:g}s", details)
        except aiohttp.ClientError as e:
            return CheckOutcome(False, describe_error(e), details)

        if not 200 <= models_status < 300:
            return CheckOutcome(False, f"Models API returned HTTP {models_status}", details)

        if 200 <= key_status < 300 and isinstance(key_body, dict) and key_body.get("data"):
            details.update(credits_from_key_data(key_body["data"]))

        return CheckOutcome(True, details=details)

    async def _get(self, path: str, parse_json: bool = False):
        session = await self._http.get_session()
        async with session.get(
            f"{self._base_url}{path}",
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=timeout(self._request_timeout),
        ) as response:
            body = None
            if parse_json and 200 <= response.status < 300:
                body = await response.json(content_type=None)
            return response.status, body
