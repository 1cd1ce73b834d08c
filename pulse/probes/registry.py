"""
Pulse Probes - Registry.

============================================================
PROBE REGISTRY
============================================================

Holds the shallow and deep probe for each dependency, keyed by
name, and runs them:

- run_probes(deep): concurrent fan-out over one probe class;
  resolves when every probe has settled
- run_probe(name, deep): targeted execution, None when unknown

A probe raising past its own boundary is converted into an
unhealthy result so the fan-out always returns one result per
registered probe.

============================================================
"""

import asyncio
import logging
import threading
from typing import Dict, List, Optional

from pulse.models import ProbeResult
from pulse.probes.base import HealthProbe, describe_error


logger = logging.getLogger(__name__)


class ProbeRegistry:
    """
    Registry of named probes.

    ```python
    registry = ProbeRegistry()
    registry.register(DatabaseProbe(engine, deep=False))
    registry.register(DatabaseProbe(engine, deep=True))

    results = await registry.run_probes(deep=False)
    single = await registry.run_probe("database", deep=True)
    ```
    """

    def __init__(self) -> None:
        self._shallow: Dict[str, HealthProbe] = {}
        self._deep: Dict[str, HealthProbe] = {}
        self._lock = threading.RLock()

    # =========================================================
    # REGISTRATION
    # =========================================================

    def register(self, probe: HealthProbe) -> None:
        """Register a probe; replaces an existing probe of the same name and class."""
        with self._lock:
            target = self._deep if probe.is_deep else self._shallow
            if probe.name in target:
                logger.info(f"Replacing probe {probe.describe()}")
            target[probe.name] = probe

    def register_pair(self, shallow: HealthProbe, deep: HealthProbe) -> None:
        if shallow.is_deep or not deep.is_deep or shallow.name != deep.name:
            raise ValueError("register_pair expects a shallow and a deep probe with one name")
        self.register(shallow)
        self.register(deep)

    def unregister(self, name: str) -> bool:
        with self._lock:
            removed_shallow = self._shallow.pop(name, None)
            removed_deep = self._deep.pop(name, None)
        return removed_shallow is not None or removed_deep is not None

    def get_probe(self, name: str, deep: bool = False) -> Optional[HealthProbe]:
        with self._lock:
            return (self._deep if deep else self._shallow).get(name)

    def list_probes(self) -> List[str]:
        """Names of every registered dependency, in registration order."""
        with self._lock:
            names = list(self._shallow)
            names.extend(n for n in self._deep if n not in self._shallow)
        return names

    def __len__(self) -> int:
        return len(self.list_probes())

    # =========================================================
    # EXECUTION
    # =========================================================

    async def run_probes(self, deep: bool = False) -> List[ProbeResult]:
        """Run every probe of one class concurrently."""
        with self._lock:
            probes = list((self._deep if deep else self._shallow).values())

        if not probes:
            return []

        outcomes = await asyncio.gather(
            *(probe.check() for probe in probes),
            return_exceptions=True,
        )
        return [
            self._settle(probe, outcome)
            for probe, outcome in zip(probes, outcomes)
        ]

    async def run_deep_probes(self) -> List[ProbeResult]:
        return await self.run_probes(deep=True)

    async def run_probe(self, name: str, deep: bool = False) -> Optional[ProbeResult]:
        probe = self.get_probe(name, deep)
        if probe is None:
            return None

        try:
            outcome = await probe.check()
        except Exception as e:
            outcome = e
        return self._settle(probe, outcome)

    def _settle(self, probe: HealthProbe, outcome: object) -> ProbeResult:
        if isinstance(outcome, ProbeResult):
            return outcome

        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome

        logger.error(f"Probe {probe.describe()} raised past its boundary: {outcome}")
        message = describe_error(outcome) if isinstance(outcome, Exception) else "Invalid probe result"
        return ProbeResult(
            name=probe.name,
            healthy=False,
            latency_ms=0.0,
            message=message,
        )
