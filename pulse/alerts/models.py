"""
Alert Models.

============================================================
PURPOSE
============================================================
Domain types for operator-defined alerts:

- AlertCondition: tagged condition (probe.unhealthy,
  probe.degraded, metric.threshold, metric.change)
- AlertConfig: one configured alert
- AlertEvent: one triggered/resolved transition
- ChannelResult: outcome of one channel delivery
- EvaluationContext: probe results and metric snapshot an
  evaluation cycle reads from

============================================================
"""

import operator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.clock import from_iso8601, to_iso8601
from pulse.models import Metric, ProbeResult


# ============================================================
# ENUMS
# ============================================================

class ConditionType(str, Enum):
    PROBE_UNHEALTHY = "probe.unhealthy"
    PROBE_DEGRADED = "probe.degraded"
    METRIC_THRESHOLD = "metric.threshold"
    METRIC_CHANGE = "metric.change"


class ComparisonOperator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"

    def compare(self, left: float, right: float) -> bool:
        return _COMPARATORS[self](left, right)


_COMPARATORS: Dict[ComparisonOperator, Callable[[float, float], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.GTE: operator.ge,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.LTE: operator.le,
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
}


class AlertChannelType(str, Enum):
    UI = "ui"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class AlertStatus(str, Enum):
    TRIGGERED = "triggered"
    RESOLVED = "resolved"


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class AlertCondition:
    """
    Condition evaluated against probe results or metrics.

    `operator` and `value` are only meaningful for
    metric.threshold. `duration` is stored but not evaluated.
    """

    type: ConditionType
    target: str
    operator: Optional[ComparisonOperator] = None
    value: Optional[float] = None
    duration: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value, "target": self.target}
        if self.operator is not None:
            data["operator"] = self.operator.value
        if self.value is not None:
            data["value"] = self.value
        if self.duration is not None:
            data["duration"] = self.duration
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertCondition":
        op = data.get("operator")
        value = data.get("value")
        return cls(
            type=ConditionType(data["type"]),
            target=data["target"],
            operator=ComparisonOperator(op) if op else None,
            value=float(value) if value is not None else None,
            duration=data.get("duration"),
        )


@dataclass
class AlertConfig:
    """An operator-defined alert."""

    id: str
    name: str
    condition: AlertCondition
    channels: List[AlertChannelType]
    recipients: List[str]
    cooldown_seconds: int
    enabled: bool
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "condition": self.condition.to_dict(),
            "channels": [c.value for c in self.channels],
            "recipients": list(self.recipients),
            "cooldown": self.cooldown_seconds,
            "enabled": self.enabled,
            "createdAt": to_iso8601(self.created_at),
            "updatedAt": to_iso8601(self.updated_at),
        }


# ============================================================
# EVENTS
# ============================================================

@dataclass
class AlertEvent:
    """
    One alert transition.

    A resolved event carries the `triggered_at` of the event it
    resolves, its own `resolved_at`, and `triggered_event_id`
    pointing back at that event.
    """

    id: str
    alert_id: str
    alert_name: str
    condition: AlertCondition
    triggered_at: datetime
    status: AlertStatus
    channels: List[AlertChannelType]
    resolved_at: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
    triggered_event_id: Optional[str] = None

    @property
    def is_triggered(self) -> bool:
        return self.status == AlertStatus.TRIGGERED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "alertId": self.alert_id,
            "alertName": self.alert_name,
            "condition": self.condition.to_dict(),
            "triggeredAt": to_iso8601(self.triggered_at),
            "status": self.status.value,
            "channels": [c.value for c in self.channels],
        }
        if self.resolved_at is not None:
            data["resolvedAt"] = to_iso8601(self.resolved_at)
        if self.details is not None:
            data["details"] = self.details
        if self.triggered_event_id is not None:
            data["triggeredEventId"] = self.triggered_event_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertEvent":
        resolved_at = data.get("resolvedAt")
        return cls(
            id=data["id"],
            alert_id=data["alertId"],
            alert_name=data["alertName"],
            condition=AlertCondition.from_dict(data["condition"]),
            triggered_at=from_iso8601(data["triggeredAt"]),
            status=AlertStatus(data["status"]),
            channels=[AlertChannelType(c) for c in data.get("channels") or []],
            resolved_at=from_iso8601(resolved_at) if resolved_at else None,
            details=data.get("details"),
            triggered_event_id=data.get("triggeredEventId"),
        )


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of delivering one event over one channel."""

    channel: AlertChannelType
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"channel": self.channel.value, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class DispatchOutcome:
    """An event together with the per-channel delivery results."""

    event: AlertEvent
    results: List[ChannelResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return any(r.success for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }


# ============================================================
# EVALUATION CONTEXT
# ============================================================

@dataclass
class EvaluationContext:
    """
    Inputs of one evaluation cycle.

    `probes` maps probe name to its latest result; `metrics` is a
    MetricCollector snapshot (name -> per-label entries).
    """

    probes: Dict[str, ProbeResult] = field(default_factory=dict)
    metrics: Dict[str, List[Metric]] = field(default_factory=dict)

    @classmethod
    def from_results(
        cls,
        results: List[ProbeResult],
        metrics: Optional[Dict[str, List[Metric]]] = None,
    ) -> "EvaluationContext":
        return cls(probes={r.name: r for r in results}, metrics=metrics or {})
