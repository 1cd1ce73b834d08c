"""
Pulse - Health Aggregator.

============================================================
RESPONSIBILITY
============================================================
Derives module and system health:

- Module: p95 of each assigned histogram against static
  latency thresholds (worst wins), then error-count escalation
  (> many threshold -> unhealthy, any errors -> at least
  degraded)
- System: reduction over shallow (or deep) probe results plus
  process resource stats
- LLM providers: summary of the OpenRouter and Ollama deep probes

============================================================
"""

import asyncio
import logging
import math
import os
import platform
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import psutil

from core.clock import ClockProtocol, SystemClock, to_iso8601
from pulse.config import PulseConfig, get_config
from pulse.metrics.collector import MetricCollector
from pulse.metrics.storage import TimeSeriesStorage
from pulse.models import (
    HealthStatus,
    HistogramMetric,
    Metric,
    ModuleHealth,
    ProbeResult,
    worst_status,
)
from pulse.probes.registry import ProbeRegistry


logger = logging.getLogger(__name__)


# ============================================================
# REDUCTIONS
# ============================================================

def threshold_status(config: PulseConfig, metric_name: str, p95: float) -> HealthStatus:
    threshold = config.latency_thresholds.get(metric_name)
    if threshold is None:
        return HealthStatus.HEALTHY
    if p95 >= threshold.critical:
        return HealthStatus.UNHEALTHY
    if p95 >= threshold.warning:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def error_status(status: HealthStatus, total_errors: int, many_threshold: int) -> HealthStatus:
    if total_errors > many_threshold:
        return HealthStatus.UNHEALTHY
    if total_errors > 0 and status == HealthStatus.HEALTHY:
        return HealthStatus.DEGRADED
    return status


def probe_status(results: List[ProbeResult]) -> HealthStatus:
    """
    All healthy -> healthy; more healthy than unhealthy ->
    degraded; otherwise unhealthy.
    """
    healthy = sum(1 for r in results if r.healthy)
    unhealthy = len(results) - healthy
    if unhealthy == 0:
        return HealthStatus.HEALTHY
    if healthy > unhealthy:
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY


def format_bytes(size: Optional[float]) -> str:
    if not size:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    index = max(0, min(int(math.floor(math.log(size, 1024))), len(units) - 1))
    value = round(size / math.pow(1024, index), 1)
    return f"{value:g}{units[index]}"


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ProcessStats:
    """Resource usage of the current process."""

    pid: int
    rss_mb: int
    vms_mb: int
    uptime_seconds: int
    cpu_percent: float
    python_version: str = field(default_factory=lambda: platform.python_version())
    platform: str = field(default_factory=lambda: sys.platform)
    environment: str = "development"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "pythonVersion": self.python_version,
            "platform": self.platform,
            "environment": self.environment,
            "memory": {"rss": self.rss_mb, "vms": self.vms_mb},
            "uptime": self.uptime_seconds,
            "cpu": self.cpu_percent,
        }


@dataclass
class SystemHealth:
    """Reduction of one probe class plus process stats."""

    status: HealthStatus
    timestamp: datetime
    deep: bool
    probes: List[ProbeResult]
    process: ProcessStats

    @property
    def healthy_count(self) -> int:
        return sum(1 for p in self.probes if p.healthy)

    @property
    def unhealthy_count(self) -> int:
        return len(self.probes) - self.healthy_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": to_iso8601(self.timestamp),
            "deep": self.deep,
            "probes": {
                "total": len(self.probes),
                "healthy": self.healthy_count,
                "unhealthy": self.unhealthy_count,
                "results": [p.to_dict() for p in self.probes],
            },
            "server": self.process.to_dict(),
        }


# ============================================================
# AGGREGATOR
# ============================================================

class HealthAggregator:
    """Computes module, system and provider health."""

    def __init__(
        self,
        collector: MetricCollector,
        storage: TimeSeriesStorage,
        registry: ProbeRegistry,
        config: Optional[PulseConfig] = None,
        clock: Optional[ClockProtocol] = None,
        environment: str = "development",
    ) -> None:
        self._collector = collector
        self._storage = storage
        self._registry = registry
        self._config = config or get_config()
        self._clock = clock or SystemClock()
        self._environment = environment
        self._process = psutil.Process(os.getpid())

    @property
    def module_names(self) -> List[str]:
        return list(self._config.module_metrics)

    # =========================================================
    # MODULES
    # =========================================================

    async def get_module_health(
        self,
        module_name: str,
        snapshot: Optional[Dict[str, List[Metric]]] = None,
    ) -> ModuleHealth:
        """
        Health of one module.

        Args:
            module_name: Key of the module -> metric map
            snapshot: Collector snapshot to reuse across modules
        """
        if snapshot is None:
            snapshot = self._collector.get_snapshot()
        errors = await self._storage.get_errors(module_name)

        metrics: Dict[str, Metric] = {}
        statuses: List[HealthStatus] = []
        for name in self._config.module_metrics.get(module_name, []):
            entries = snapshot.get(name)
            if not entries:
                continue
            metric = entries[0]
            metrics[name] = metric
            if isinstance(metric, HistogramMetric):
                statuses.append(threshold_status(self._config, name, metric.p95))

        status = error_status(
            worst_status(statuses),
            sum(e.count for e in errors),
            self._config.many_errors_threshold,
        )

        return ModuleHealth(
            name=module_name,
            status=status,
            metrics=metrics,
            errors=errors,
            last_updated=self._clock.now(),
        )

    async def get_all_modules_health(self) -> Dict[str, ModuleHealth]:
        snapshot = self._collector.get_snapshot()
        names = self.module_names
        results = await asyncio.gather(
            *(self.get_module_health(name, snapshot) for name in names)
        )
        return dict(zip(names, results))

    # =========================================================
    # SYSTEM
    # =========================================================

    def get_process_stats(self) -> ProcessStats:
        with self._process.oneshot():
            memory = self._process.memory_info()
            cpu_times = self._process.cpu_times()
            created = self._process.create_time()

        uptime = max(self._clock.timestamp() - created, 0.0)
        cpu_used = cpu_times.user + cpu_times.system
        cpu_percent = round(cpu_used / uptime * 100, 2) if uptime > 0 else 0.0

        return ProcessStats(
            pid=self._process.pid,
            rss_mb=round(memory.rss / 1024 / 1024),
            vms_mb=round(memory.vms / 1024 / 1024),
            uptime_seconds=int(uptime),
            cpu_percent=cpu_percent,
            environment=self._environment,
        )

    async def get_system_health(self) -> SystemHealth:
        return await self._reduce(deep=False)

    async def get_deep_health(self) -> SystemHealth:
        return await self._reduce(deep=True)

    async def _reduce(self, deep: bool) -> SystemHealth:
        probes = await self._registry.run_probes(deep=deep)
        return SystemHealth(
            status=probe_status(probes),
            timestamp=self._clock.now(),
            deep=deep,
            probes=probes,
            process=self.get_process_stats(),
        )

    # =========================================================
    # LLM PROVIDERS
    # =========================================================

    async def _deep_probe(self, name: str) -> ProbeResult:
        result = await self._registry.run_probe(name, deep=True)
        if result is None:
            return ProbeResult(name=name, healthy=False, latency_ms=0.0, message=f"{name} probe not registered")
        return result

    async def get_llm_health(self) -> Dict[str, Any]:
        llm, ollama = await asyncio.gather(
            self._deep_probe("llm"),
            self._deep_probe("ollama"),
        )
        llm_details = llm.details or {}
        ollama_details = ollama.details or {}

        providers = 0
        providers_healthy = 0
        if llm_details.get("configured"):
            providers += 1
            providers_healthy += int(llm.healthy)
        if ollama_details.get("available"):
            providers += 1
            providers_healthy += int(ollama.healthy)

        if providers_healthy == providers:
            status = HealthStatus.HEALTHY
        elif providers_healthy > 0:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        models = None
        if "modelsInstalled" in ollama_details:
            models = {
                "installed": ollama_details["modelsInstalled"],
                "loaded": ollama_details.get("modelsLoaded", 0),
            }

        return {
            "timestamp": to_iso8601(self._clock.now()),
            "summary": {
                "status": status.value,
                "providers": providers,
                "providersHealthy": providers_healthy,
            },
            "openrouter": {
                "status": _status_of(llm),
                "latency": round(llm.latency_ms),
                "message": llm.message,
                "credits": llm_details.get("credits"),
            },
            "ollama": {
                "status": _status_of(ollama),
                "latency": round(ollama.latency_ms),
                "message": ollama.message,
                "version": ollama_details.get("version"),
                "models": models,
            },
        }

    async def get_openrouter_health(self) -> Dict[str, Any]:
        result = await self._deep_probe("llm")
        details = result.details or {}
        account = None
        if "isFreeTier" in details:
            account = {"isFreeTier": details["isFreeTier"]}

        return {
            "timestamp": to_iso8601(self._clock.now()),
            "status": _status_of(result),
            "latency": round(result.latency_ms),
            "message": result.message,
            "credits": details.get("credits"),
            "usage": details.get("usage"),
            "account": account,
            "rateLimit": details.get("rateLimit"),
            "config": {
                "baseUrl": details.get("baseUrl", ""),
                "defaultModel": details.get("defaultModel", ""),
            },
        }

    async def get_ollama_health(self) -> Dict[str, Any]:
        result = await self._deep_probe("ollama")
        details = result.details or {}
        config = details.get("config") or {}

        return {
            "timestamp": to_iso8601(self._clock.now()),
            "status": _status_of(result),
            "latency": round(result.latency_ms),
            "message": result.message,
            "version": details.get("version"),
            "models": [
                {
                    "name": m.get("name"),
                    "size": format_bytes(m.get("size")),
                    "modified": m.get("modified_at"),
                }
                for m in details.get("models") or []
            ],
            "loaded": [
                {"name": m.get("name"), "sizeVram": format_bytes(m.get("size_vram"))}
                for m in details.get("loaded") or []
            ],
            "config": {
                "url": details.get("url", ""),
                "available": details.get("available", False),
                "maxParams": config.get("maxParams", ""),
                "allowedQuants": config.get("allowedQuants", []),
            },
        }


def _status_of(result: ProbeResult) -> str:
    return (HealthStatus.HEALTHY if result.healthy else HealthStatus.UNHEALTHY).value
