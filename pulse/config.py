"""
Pulse - Configuration.

============================================================
CONFIGURATION ITEMS
============================================================

Metrics:
- Histogram bucket boundaries (ms) and sample cap

Storage:
- Durable retention per snapshot period class
- In-memory caps for snapshots and points
- Point retention and error-summary TTL

Health:
- Module -> metric assignment
- p95 latency thresholds (warning / critical)
- "Many errors" escalation threshold

Scheduling and timeouts:
- Scheduler interval and snapshot period class
- Shallow / deep probe timeouts
- Alert channel timeout

Alerts and streaming:
- Events kept per alert, recent events listed
- SSE update interval

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)


DEFAULT_HISTOGRAM_BUCKETS: List[float] = [5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000]

DEFAULT_RETENTION_SECONDS: Dict[str, int] = {
    "1m": 60 * 60,
    "5m": 6 * 60 * 60,
    "1h": 7 * 24 * 60 * 60,
    "24h": 30 * 24 * 60 * 60,
}

DEFAULT_MODULE_METRICS: Dict[str, List[str]] = {
    "infrastructure": [
        "db.connections.active",
        "db.query.latency",
        "db.query.errors",
        "redis.ping.latency",
        "redis.memory.used",
        "llm.request.latency",
        "llm.request.errors",
        "llm.tokens.input",
        "llm.tokens.output",
    ],
    "services": [
        "notifications.created",
        "notifications.delivered",
        "notifications.latency.create",
        "notifications.errors",
    ],
    "agents": [
        "agent.triager.invocations",
        "agent.triager.latency",
        "agent.triager.errors",
        "agent.copilot.invocations",
        "agent.copilot.latency",
        "agent.copilot.errors",
    ],
    "actions": [
        "actions.registered",
        "actions.executed",
        "actions.success",
        "actions.errors",
        "actions.permission_denied",
        "actions.latency",
    ],
    "knowledge": [
        "knowledge.search.queries",
        "knowledge.search.latency",
        "knowledge.search.empty",
        "knowledge.documents.total",
        "knowledge.index.operations",
    ],
}


@dataclass
class LatencyThreshold:
    """p95 thresholds in milliseconds. Values >= critical are unhealthy."""

    warning: float
    critical: float


def _default_thresholds() -> Dict[str, LatencyThreshold]:
    return {
        "db.query.latency": LatencyThreshold(warning=300, critical=500),
        "redis.ping.latency": LatencyThreshold(warning=30, critical=50),
        "llm.request.latency": LatencyThreshold(warning=3000, critical=5000),
    }


@dataclass
class PulseConfig:
    """Tunables for every Pulse component."""

    # Metrics
    histogram_buckets: List[float] = field(default_factory=lambda: list(DEFAULT_HISTOGRAM_BUCKETS))
    max_histogram_samples: int = 10000

    # Storage
    retention_seconds: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RETENTION_SECONDS))
    max_memory_snapshots: int = 1000
    max_memory_points: int = 3600
    point_retention_seconds: int = 60 * 60
    error_ttl_seconds: int = 24 * 60 * 60
    redis_key_prefix: str = "pulse:metrics"

    # Health
    module_metrics: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_MODULE_METRICS.items()}
    )
    latency_thresholds: Dict[str, LatencyThreshold] = field(default_factory=_default_thresholds)
    many_errors_threshold: int = 10

    # Scheduling
    scheduler_interval_seconds: float = 5.0
    snapshot_period: str = "1m"

    # Timeouts
    shallow_probe_timeout_seconds: float = 2.0
    deep_probe_timeout_seconds: float = 10.0
    channel_timeout_seconds: float = 15.0

    # Alerts
    events_per_alert: int = 100
    recent_events_limit: int = 20
    alert_detail_events_limit: int = 50
    default_cooldown_seconds: int = 300

    # Streaming
    sse_update_interval_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "PulseConfig":
        """
        Load configuration from environment variables.

        Only scalar tunables are overridable; maps keep their
        defaults.
        """
        config = cls()

        if os.getenv("PULSE_SCHEDULER_INTERVAL"):
            config.scheduler_interval_seconds = float(os.getenv("PULSE_SCHEDULER_INTERVAL"))
        if os.getenv("PULSE_SNAPSHOT_PERIOD"):
            config.snapshot_period = os.getenv("PULSE_SNAPSHOT_PERIOD")
        if os.getenv("PULSE_MAX_HISTOGRAM_SAMPLES"):
            config.max_histogram_samples = int(os.getenv("PULSE_MAX_HISTOGRAM_SAMPLES"))
        if os.getenv("PULSE_SHALLOW_PROBE_TIMEOUT"):
            config.shallow_probe_timeout_seconds = float(os.getenv("PULSE_SHALLOW_PROBE_TIMEOUT"))
        if os.getenv("PULSE_DEEP_PROBE_TIMEOUT"):
            config.deep_probe_timeout_seconds = float(os.getenv("PULSE_DEEP_PROBE_TIMEOUT"))
        if os.getenv("PULSE_CHANNEL_TIMEOUT"):
            config.channel_timeout_seconds = float(os.getenv("PULSE_CHANNEL_TIMEOUT"))
        if os.getenv("PULSE_EVENTS_PER_ALERT"):
            config.events_per_alert = int(os.getenv("PULSE_EVENTS_PER_ALERT"))
        if os.getenv("PULSE_MANY_ERRORS_THRESHOLD"):
            config.many_errors_threshold = int(os.getenv("PULSE_MANY_ERRORS_THRESHOLD"))
        if os.getenv("PULSE_SSE_INTERVAL"):
            config.sse_update_interval_seconds = float(os.getenv("PULSE_SSE_INTERVAL"))

        if config.snapshot_period not in config.retention_seconds:
            logger.warning(
                f"Unknown snapshot period {config.snapshot_period!r}, falling back to 1m"
            )
            config.snapshot_period = "1m"

        return config


# =============================================================
# GLOBAL CONFIG INSTANCE
# =============================================================

_default_config: Optional[PulseConfig] = None


def get_config() -> PulseConfig:
    """Get the global Pulse configuration."""
    global _default_config
    if _default_config is None:
        _default_config = PulseConfig.from_env()
    return _default_config


def set_config(config: PulseConfig) -> None:
    """Set the global Pulse configuration."""
    global _default_config
    _default_config = config
