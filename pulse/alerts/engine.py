"""
Alert Engine.

============================================================
PURPOSE
============================================================
Evaluates operator-defined alerts, records their transitions and
dispatches notifications.

State per alert: idle -> triggered -> (cooldown) -> idle, with an
explicit `resolve_alert` transition independent of cooldown.

PRINCIPLES:
- A condition that holds while the alert is on cooldown records
  nothing
- No automatic resolution; resolving is an explicit operation
- Channels are dispatched independently, each under its own
  timeout; a failing channel never prevents the others
- Dispatch errors end up in ChannelResult, never raised

============================================================
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock
from pulse.alerts.channels.base import AlertChannel
from pulse.alerts.cooldown import CooldownTracker
from pulse.alerts.models import (
    AlertChannelType,
    AlertCondition,
    AlertConfig,
    AlertEvent,
    AlertStatus,
    ChannelResult,
    ConditionType,
    DispatchOutcome,
    EvaluationContext,
)
from pulse.alerts.schemas import AlertCreate, AlertUpdate
from pulse.alerts.store import AlertStore, new_id
from pulse.exceptions import AlertNotFoundError
from pulse.metrics.collector import MetricCollector
from pulse.models import HistogramMetric


logger = logging.getLogger(__name__)


TRIGGERED_COUNTER = "pulse.alerts.triggered"
RESOLVED_COUNTER = "pulse.alerts.resolved"
DRILL_COUNTER = "pulse.alerts.drills"

TransitionListener = Callable[[AlertEvent], None]


# ============================================================
# CONDITION EVALUATION
# ============================================================

def condition_holds(condition: AlertCondition, context: EvaluationContext) -> bool:
    """
    Evaluate one condition against the cycle context.

    - probe.unhealthy: the probe's last result is unhealthy
    - probe.degraded: unhealthy and carrying a non-empty message
    - metric.threshold: operator applied to the first entry's
      scalar value; histogram entries never match
    - metric.change: never matches
    """
    if condition.type == ConditionType.PROBE_UNHEALTHY:
        probe = context.probes.get(condition.target)
        return probe is not None and not probe.healthy

    if condition.type == ConditionType.PROBE_DEGRADED:
        probe = context.probes.get(condition.target)
        return probe is not None and not probe.healthy and bool(probe.message)

    if condition.type == ConditionType.METRIC_THRESHOLD:
        if condition.operator is None or condition.value is None:
            return False
        entries = context.metrics.get(condition.target)
        if not entries:
            return False
        metric = entries[0]
        if isinstance(metric, HistogramMetric):
            return False
        return condition.operator.compare(metric.value, condition.value)

    return False


def _trigger_details(condition: AlertCondition, context: EvaluationContext) -> Dict[str, Any]:
    probe = context.probes.get(condition.target)
    if probe is not None:
        return {"probe": probe.to_dict()}
    entries = context.metrics.get(condition.target)
    if entries:
        return {"metric": {"name": condition.target, **entries[0].to_dict()}}
    return {}


# ============================================================
# ALERT ENGINE
# ============================================================

class AlertEngine:
    """
    Evaluates alerts and dispatches their transitions.

    This is the central alert coordination point.
    """

    def __init__(
        self,
        store: AlertStore,
        collector: MetricCollector,
        channels: Optional[List[AlertChannel]] = None,
        cooldowns: Optional[CooldownTracker] = None,
        clock: Optional[ClockProtocol] = None,
        channel_timeout_seconds: float = 15.0,
    ) -> None:
        self._store = store
        self._collector = collector
        self._clock = clock or SystemClock()
        self._cooldowns = cooldowns or CooldownTracker(self._clock)
        self._channel_timeout = channel_timeout_seconds
        self._channels: Dict[AlertChannelType, AlertChannel] = {}
        self._listeners: List[TransitionListener] = []

        for channel in channels or []:
            self.add_channel(channel)

        # Evaluation lock
        self._eval_lock = asyncio.Lock()

    @property
    def store(self) -> AlertStore:
        return self._store

    def add_channel(self, channel: AlertChannel) -> None:
        self._channels[channel.channel_type] = channel

    def get_channel(self, channel_type: AlertChannelType) -> Optional[AlertChannel]:
        return self._channels.get(channel_type)

    # =========================================================
    # TRANSITION LISTENERS
    # =========================================================

    def add_listener(self, listener: TransitionListener) -> Callable[[], None]:
        """
        Observe every triggered/resolved transition.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify_listeners(self, event: AlertEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Alert listener error: {e}")

    # =========================================================
    # EVALUATION
    # =========================================================

    def is_on_cooldown(self, alert_id: str) -> bool:
        return self._cooldowns.is_active(alert_id)

    async def evaluate_alerts(self, context: EvaluationContext) -> List[DispatchOutcome]:
        """
        Evaluate every enabled alert against the context.

        Returns one DispatchOutcome per alert that triggered.
        """
        async with self._eval_lock:
            triggered: List[DispatchOutcome] = []

            for config in self._store.list_configs(enabled_only=True):
                try:
                    if not condition_holds(config.condition, context):
                        continue
                    if self.is_on_cooldown(config.id):
                        logger.debug(f"Alert {config.name} suppressed by cooldown")
                        continue

                    outcome = await self._trigger(
                        config,
                        _trigger_details(config.condition, context),
                        manual=False,
                    )
                    triggered.append(outcome)
                except Exception as e:
                    logger.error(f"Error evaluating alert {config.id}: {e}")

            return triggered

    async def trigger_manual_alert(
        self,
        alert_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> DispatchOutcome:
        """
        Operator drill: record and dispatch a triggered event.

        Ignores the condition and the cooldown, and starts no
        cooldown. Counted under pulse.alerts.drills, not
        pulse.alerts.triggered.
        """
        config = self.get_alert(alert_id)
        return await self._trigger(
            config,
            details if details is not None else {"manual": True},
            manual=True,
        )

    async def resolve_alert(
        self,
        alert_id: str,
        event_id: Optional[str] = None,
    ) -> Optional[DispatchOutcome]:
        """
        Record and dispatch a resolution of the latest event.

        Args:
            alert_id: Alert to resolve
            event_id: Id for the resolved event (fresh id if omitted)

        Returns:
            None when the alert has no events or is already resolved
        """
        config = self.get_alert(alert_id)
        last = self._store.get_last_event(alert_id)
        if last is None or last.status == AlertStatus.RESOLVED:
            return None

        event = AlertEvent(
            id=event_id or new_id(),
            alert_id=config.id,
            alert_name=last.alert_name,
            condition=last.condition,
            triggered_at=last.triggered_at,
            resolved_at=max(self._clock.now(), last.triggered_at),
            status=AlertStatus.RESOLVED,
            channels=list(last.channels),
            details=last.details,
            triggered_event_id=last.id,
        )
        self._store.append_event(event)
        logger.info(f"Alert resolved: {config.name} ({config.id})")

        results = await self._dispatch(event, config.recipients)
        self._collector.inc_counter(RESOLVED_COUNTER, 1, {"alert": config.name})
        return DispatchOutcome(event=event, results=results)

    async def _trigger(
        self,
        config: AlertConfig,
        details: Optional[Dict[str, Any]],
        manual: bool,
    ) -> DispatchOutcome:
        event = AlertEvent(
            id=new_id(),
            alert_id=config.id,
            alert_name=config.name,
            condition=config.condition,
            triggered_at=self._clock.now(),
            status=AlertStatus.TRIGGERED,
            channels=list(config.channels),
            details=details,
        )
        self._store.append_event(event)
        if not manual:
            self._cooldowns.start(config.id, config.cooldown_seconds)
        logger.info(f"Alert triggered: {config.name} ({config.id})")

        results = await self._dispatch(event, config.recipients)
        counter = DRILL_COUNTER if manual else TRIGGERED_COUNTER
        self._collector.inc_counter(counter, 1, {"alert": config.name})
        return DispatchOutcome(event=event, results=results)

    # =========================================================
    # DISPATCH
    # =========================================================

    async def _dispatch(self, event: AlertEvent, recipients: List[str]) -> List[ChannelResult]:
        """Send to every channel of the event concurrently."""
        self._notify_listeners(event)
        if not event.channels:
            return []

        results = await asyncio.gather(
            *(self._send_one(channel_type, event, recipients) for channel_type in event.channels)
        )
        for result in results:
            if not result.success:
                logger.error(
                    f"Alert {event.alert_name}: {result.channel.value} delivery failed: {result.error}"
                )
        return list(results)

    async def _send_one(
        self,
        channel_type: AlertChannelType,
        event: AlertEvent,
        recipients: List[str],
    ) -> ChannelResult:
        channel = self._channels.get(channel_type)
        if channel is None:
            return ChannelResult(channel_type, False, f"Channel '{channel_type.value}' not available")

        try:
            return await asyncio.wait_for(
                channel.send(event, list(recipients)),
                timeout=self._channel_timeout,
            )
        except asyncio.TimeoutError:
            return ChannelResult(
                channel_type, False, f"Timed out after {self._channel_timeout:g}s"
            )
        except Exception as e:
            return ChannelResult(channel_type, False, str(e) or e.__class__.__name__)

    # =========================================================
    # CONFIGURATION
    # =========================================================

    def list_alerts(self) -> List[AlertConfig]:
        return self._store.list_configs()

    def get_alert(self, alert_id: str) -> AlertConfig:
        config = self._store.get_config(alert_id)
        if config is None:
            raise AlertNotFoundError(alert_id)
        return config

    def create_alert(self, body: AlertCreate) -> AlertConfig:
        config = self._store.create_config(
            name=body.name,
            description=body.description,
            condition=body.condition.to_condition(),
            channels=list(body.channels),
            recipients=list(body.recipients),
            cooldown_seconds=body.cooldown_seconds,
            enabled=body.enabled,
        )
        logger.info(f"Alert created: {config.name} ({config.id})")
        return config

    def update_alert(self, alert_id: str, body: AlertUpdate) -> AlertConfig:
        config = self._store.update_config(alert_id, body.changes())
        if config is None:
            raise AlertNotFoundError(alert_id)
        return config

    def delete_alert(self, alert_id: str) -> None:
        if not self._store.delete_config(alert_id):
            raise AlertNotFoundError(alert_id)
        self._cooldowns.forget(alert_id)
        logger.info(f"Alert deleted: {alert_id}")

    # =========================================================
    # EVENT QUERIES
    # =========================================================

    def get_alert_events(self, alert_id: str, limit: int = 50) -> List[AlertEvent]:
        self.get_alert(alert_id)
        return self._store.list_events(alert_id, limit=limit)

    def get_recent_events(self, limit: int = 20) -> List[AlertEvent]:
        return self._store.list_recent_events(limit=limit)

    def get_active_alerts(self) -> List[AlertEvent]:
        """Latest event of every alert whose current state is triggered."""
        active: List[AlertEvent] = []
        for config in self._store.list_configs():
            last = self._store.get_last_event(config.id)
            if last is not None and last.is_triggered:
                active.append(last)
        return active

    async def close(self) -> None:
        for channel in self._channels.values():
            await channel.close()
