"""
Pulse Probes - Job queue / scheduler worker.

============================================================
HEALTH RULES
============================================================
Unhealthy:
- worker not running
- more than 100 jobs waiting
- success rate below 80% over more than 10 recent runs

Healthy but degraded (message set, details.status=degraded):
- more than 50 waiting or more than 10 failed
- success rate below 95% over more than 10 recent runs

============================================================
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from core.clock import ClockProtocol
from pulse.probes.base import CheckOutcome, HealthProbe


CRITICAL_WAITING = 100
DEGRADED_WAITING = 50
DEGRADED_FAILED = 10
MIN_RUNS_FOR_RATE = 10
CRITICAL_SUCCESS_RATE = 80.0
DEGRADED_SUCCESS_RATE = 95.0


@dataclass
class QueueStats:
    """Snapshot of the queue supplied by the scheduler."""

    worker_running: bool
    waiting: int = 0
    active: int = 0
    failed: int = 0
    completed: int = 0
    recent_runs: int = 0
    success_rate: float = 100.0
    jobs_enabled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker": {"running": self.worker_running},
            "queue": {
                "waiting": self.waiting,
                "active": self.active,
                "failed": self.failed,
                "completed": self.completed,
            },
            "recentRuns": {"total": self.recent_runs, "successRate": self.success_rate},
            "jobs": {"enabled": self.jobs_enabled},
        }


WorkerRunning = Callable[[], bool]
QueueStatsProvider = Callable[[], Awaitable[QueueStats]]


def evaluate_queue(stats: QueueStats) -> CheckOutcome:
    details = stats.to_dict()
    enough_runs = stats.recent_runs > MIN_RUNS_FOR_RATE

    if not stats.worker_running:
        return CheckOutcome(False, "Worker not running", details)
    if stats.waiting > CRITICAL_WAITING:
        return CheckOutcome(False, f"Queue backlog critical: {stats.waiting} waiting", details)
    if enough_runs and stats.success_rate < CRITICAL_SUCCESS_RATE:
        return CheckOutcome(False, f"Low success rate: {stats.success_rate:g}%", details)

    if stats.waiting > DEGRADED_WAITING or stats.failed > DEGRADED_FAILED:
        return CheckOutcome(
            True,
            f"Queue degraded: {stats.waiting} waiting, {stats.failed} failed",
            {**details, "status": "degraded"},
        )
    if enough_runs and stats.success_rate < DEGRADED_SUCCESS_RATE:
        return CheckOutcome(
            True,
            f"Success rate degraded: {stats.success_rate:g}%",
            {**details, "status": "degraded"},
        )

    return CheckOutcome(
        True,
        f"OK - {stats.jobs_enabled} jobs, {stats.success_rate:g}% success",
        details,
    )


class QueueProbe(HealthProbe):
    """Scheduler worker and queue probe."""

    def __init__(
        self,
        deep: bool,
        worker_running: Optional[WorkerRunning] = None,
        stats_provider: Optional[QueueStatsProvider] = None,
        timeout_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__("queue", deep, timeout_seconds, clock)
        self._worker_running = worker_running
        self._stats_provider = stats_provider

    async def _check(self) -> CheckOutcome:
        if not self.is_deep:
            if self._worker_running is None:
                return CheckOutcome(False, "Queue worker not configured")
            running = bool(self._worker_running())
            return CheckOutcome(
                running,
                "Worker running" if running else "Worker not running",
                {"workerRunning": running},
            )

        if self._stats_provider is None:
            return CheckOutcome(False, "Queue stats not configured")
        return evaluate_queue(await self._stats_provider())
