"""
Pulse Probes - Base.

============================================================
PURPOSE
============================================================
A probe is a bounded health check against one dependency,
registered in two variants:

- shallow: configuration / connectivity only, cheap
- deep: full round trip with its own timeout

`check()` never raises: timeouts and exceptions become
unhealthy ProbeResults with a human-readable message.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.clock import ClockProtocol, SystemClock
from pulse.models import ProbeResult


logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    """What a probe implementation reports; latency is added by the base."""

    healthy: bool
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


def describe_error(error: BaseException) -> str:
    message = str(error)
    return message if message else error.__class__.__name__


class HealthProbe(ABC):
    """
    Base class for all probes.

    Subclasses implement `_check()`; callers use `check()`.
    """

    def __init__(
        self,
        name: str,
        is_deep: bool,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._name = name
        self._is_deep = is_deep
        self._timeout_seconds = timeout_seconds
        self._clock = clock or SystemClock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_deep(self) -> bool:
        return self._is_deep

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self._timeout_seconds

    @abstractmethod
    async def _check(self) -> CheckOutcome:
        """Run the check. May raise; `check()` converts failures."""
        pass

    async def check(self) -> ProbeResult:
        started = self._clock.monotonic()
        try:
            if self._timeout_seconds:
                outcome = await asyncio.wait_for(self._check(), self._timeout_seconds)
            else:
                outcome = await self._check()
        except asyncio.TimeoutError:
            logger.warning(f"Probe {self.describe()} timed out after {self._timeout_seconds}s")
            return self._result(
                started,
                CheckOutcome(False, f"Timed out after {self._timeout_seconds:g}s"),
            )
        except Exception as e:
            logger.warning(f"Probe {self.describe()} failed: {e}")
            return self._result(started, CheckOutcome(False, describe_error(e)))

        return self._result(started, outcome)

    def _result(self, started: float, outcome: CheckOutcome) -> ProbeResult:
        return ProbeResult(
            name=self._name,
            healthy=outcome.healthy,
            latency_ms=(self._clock.monotonic() - started) * 1000,
            message=outcome.message,
            details=outcome.details,
        )

    def describe(self) -> str:
        return f"{self._name}({'deep' if self._is_deep else 'shallow'})"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()}>"
