"""
Pulse Probes - Redis.

Shallow: PING only.
Deep: PING plus `INFO memory`; a failed memory lookup is ignored.
"""

import logging
from typing import Any, Dict, Optional

from core.clock import ClockProtocol
from pulse.metrics.collector import MetricCollector
from pulse.probes.base import CheckOutcome, HealthProbe


logger = logging.getLogger(__name__)


class RedisProbe(HealthProbe):
    """Probe for a `redis.asyncio.Redis` client."""

    def __init__(
        self,
        client: Optional[Any],
        deep: bool,
        collector: Optional[MetricCollector] = None,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("redis", deep, timeout_seconds, clock)
        self._client = client
        self._collector = collector

    async def _check(self) -> CheckOutcome:
        if self._client is None:
            return CheckOutcome(False, "REDIS_URL not configured")

        started = self._clock.monotonic()
        pong = await self._client.ping()
        ping_ms = (self._clock.monotonic() - started) * 1000

        if not pong:
            return CheckOutcome(False, "PING returned no PONG")

        if self._collector is not None:
            self._collector.observe_histogram("redis.ping.latency", ping_ms)

        details: Dict[str, Any] = {"pingMs": round(ping_ms, 3)}
        if not self.is_deep:
            return CheckOutcome(True, details=details)

        try:
            info = await self._client.info("memory")
            used = int(info.get("used_memory", 0))
            details["usedMemory"] = used
            details["usedMemoryHuman"] = info.get("used_memory_human")
            if self._collector is not None:
                self._collector.set_gauge("redis.memory.used", used)
        except Exception as e:
            logger.debug(f"Redis memory info unavailable: {e}")

        return CheckOutcome(True, details=details)
