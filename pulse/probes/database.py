"""
Pulse Probes - Database.

Shallow: connection-pool statistics only.
Deep: `SELECT 1` round trip, run in a worker thread.
"""

import asyncio
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool

from core.clock import ClockProtocol
from pulse.metrics.collector import MetricCollector
from pulse.probes.base import CheckOutcome, HealthProbe


def pool_stats(engine: Engine) -> Dict[str, Any]:
    pool = engine.pool
    if not isinstance(pool, QueuePool):
        return {"pool": pool.__class__.__name__}
    return {
        "pool": pool.__class__.__name__,
        "size": pool.size(),
        "checkedIn": pool.checkedin(),
        "checkedOut": pool.checkedout(),
        "overflow": pool.overflow(),
    }


class DatabaseProbe(HealthProbe):
    """Relational store probe."""

    def __init__(
        self,
        engine: Optional[Engine],
        deep: bool,
        max_overflow: int = 10,
        collector: Optional[MetricCollector] = None,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("database", deep, timeout_seconds, clock)
        self._engine = engine
        self._max_overflow = max_overflow
        self._collector = collector

    async def _check(self) -> CheckOutcome:
        if self._engine is None:
            return CheckOutcome(False, "DATABASE_URL not configured")

        if not self.is_deep:
            return self._check_pool()

        started = self._clock.monotonic()
        await asyncio.to_thread(self._select_one)
        query_ms = (self._clock.monotonic() - started) * 1000

        if self._collector is not None:
            self._collector.observe_histogram("db.query.latency", query_ms)

        return CheckOutcome(
            True,
            details={"queryTimeMs": round(query_ms, 3), "pool": pool_stats(self._engine)},
        )

    def _check_pool(self) -> CheckOutcome:
        stats = pool_stats(self._engine)
        if "checkedIn" not in stats:
            return CheckOutcome(True, details=stats)

        if self._collector is not None:
            self._collector.set_gauge("db.connections.active", stats["checkedOut"])

        exhausted = stats["checkedIn"] == 0 and stats["overflow"] >= self._max_overflow
        if exhausted:
            return CheckOutcome(
                False,
                f"Connection pool exhausted ({stats['checkedOut']} checked out)",
                details=stats,
            )
        return CheckOutcome(True, details=stats)

    def _select_one(self) -> None:
        with self._engine.connect() as conn:
            row = conn.execute(text("SELECT 1")).fetchone()
        if row is None or row[0] != 1:
            raise RuntimeError("Unexpected SELECT 1 result")
