"""
Pulse Probes - Ollama (local LLM runtime).

Shallow: enabled flag and URL present.
Deep: concurrent `/api/version`, `/api/tags` and `/api/ps`.
A disabled runtime is reported healthy with an explanatory
message.
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from core.clock import ClockProtocol
from pulse.http_client import HttpClient, timeout
from pulse.probes.base import CheckOutcome, HealthProbe, describe_error


DISABLED_MESSAGE = "Ollama disabled (OLLAMA_AVAILABLE=false)"


class OllamaProbe(HealthProbe):
    """Local LLM runtime probe."""

    def __init__(
        self,
        available: bool,
        url: Optional[str],
        deep: bool,
        http: Optional[HttpClient] = None,
        max_params: str = "",
        allowed_quants: Optional[List[str]] = None,
        request_timeout_seconds: float = 5.0,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("ollama", deep, timeout_seconds, clock)
        self._available = available
        self._url = url.rstrip("/") if url else None
        self._http = http or HttpClient()
        self._max_params = max_params
        self._allowed_quants = list(allowed_quants or [])
        self._request_timeout = request_timeout_seconds

    async def _check(self) -> CheckOutcome:
        base = {"available": self._available, "url": self._url or ""}

        if not self.is_deep:
            if not self._available:
                return CheckOutcome(False, "OLLAMA_AVAILABLE=false", base)
            if not self._url:
                return CheckOutcome(False, "OLLAMA_URL not configured", base)
            return CheckOutcome(True, details=base)

        if not self._available:
            return CheckOutcome(True, DISABLED_MESSAGE, base)
        if not self._url:
            return CheckOutcome(False, "OLLAMA_URL not configured", base)

        try:
            (version_status, version), (_, tags), (_, ps) = await asyncio.gather(
                self._get("/api/version"),
                self._get("/api/tags"),
                self._get("/api/ps"),
            )
        except asyncio.TimeoutError:
            return CheckOutcome(
                False,
                f"Ollama timed out after {self._request_timeout:g}s",
                {**base, "available": False},
            )
        except aiohttp.ClientError as e:
            return CheckOutcome(False, describe_error(e), {**base, "available": False})

        if not 200 <= version_status < 300:
            return CheckOutcome(False, f"Version check failed: HTTP {version_status}", base)

        models = (tags or {}).get("models") or []
        loaded = (ps or {}).get("models") or []
        details: Dict[str, Any] = {
            **base,
            "version": (version or {}).get("version"),
            "modelsInstalled": len(models),
            "modelsLoaded": len(loaded),
            "models": models,
            "loaded": loaded,
            "config": {
                "maxParams": self._max_params,
                "allowedQuants": self._allowed_quants,
            },
        }
        return CheckOutcome(True, details=details)

    async def _get(self, path: str):
        session = await self._http.get_session()
        async with session.get(
            f"{self._url}{path}",
            timeout=timeout(self._request_timeout),
        ) as response:
            if not 200 <= response.status < 300:
                return response.status, None
            return response.status, await response.json(content_type=None)
