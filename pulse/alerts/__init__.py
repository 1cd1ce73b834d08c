"""
Pulse alerting: configs, evaluation, cooldown and channel dispatch.
"""

from pulse.alerts.cooldown import CooldownTracker
from pulse.alerts.engine import AlertEngine, condition_holds
from pulse.alerts.models import (
    AlertChannelType,
    AlertCondition,
    AlertConfig,
    AlertEvent,
    AlertStatus,
    ChannelResult,
    ComparisonOperator,
    ConditionType,
    DispatchOutcome,
    EvaluationContext,
)
from pulse.alerts.schemas import AlertCreate, AlertUpdate, parse_alert_create, parse_alert_update
from pulse.alerts.store import AlertStore


__all__ = [
    "AlertEngine",
    "AlertStore",
    "CooldownTracker",
    "condition_holds",
    "AlertChannelType",
    "AlertCondition",
    "AlertConfig",
    "AlertEvent",
    "AlertStatus",
    "ChannelResult",
    "ComparisonOperator",
    "ConditionType",
    "DispatchOutcome",
    "EvaluationContext",
    "AlertCreate",
    "AlertUpdate",
    "parse_alert_create",
    "parse_alert_update",
]
