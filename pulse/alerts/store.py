"""
Alert Store.

============================================================
RESPONSIBILITY
============================================================
Maps alert configs and events between the domain types in
`pulse.alerts.models` and the relational rows owned by
`storage.repositories.alerts.AlertRepository`. Every call runs in
its own transaction.

============================================================
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from core.clock import ClockProtocol, SystemClock, ensure_utc
from pulse.alerts.models import (
    AlertChannelType,
    AlertCondition,
    AlertConfig,
    AlertEvent,
    AlertStatus,
)
from storage.database import session_scope
from storage.models.alerts import AlertConfigModel, AlertEventModel
from storage.repositories.alerts import AlertRepository


logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    return ensure_utc(value) if value is not None else None


def config_from_row(row: AlertConfigModel) -> AlertConfig:
    return AlertConfig(
        id=row.id,
        name=row.name,
        description=row.description,
        condition=AlertCondition.from_dict(row.condition),
        channels=[AlertChannelType(c) for c in row.channels or []],
        recipients=list(row.recipients or []),
        cooldown_seconds=row.cooldown_seconds,
        enabled=row.enabled,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def event_from_row(row: AlertEventModel) -> AlertEvent:
    return AlertEvent(
        id=row.id,
        alert_id=row.alert_id,
        alert_name=row.alert_name,
        condition=AlertCondition.from_dict(row.condition),
        triggered_at=_aware(row.triggered_at),
        resolved_at=_aware(row.resolved_at),
        status=AlertStatus(row.status),
        channels=[AlertChannelType(c) for c in row.channels or []],
        details=row.details,
        triggered_event_id=row.triggered_event_id,
    )


class AlertStore:
    """Transactional access to alert configs and events."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[ClockProtocol] = None,
        events_per_alert: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._events_per_alert = events_per_alert

    # =========================================================
    # CONFIGS
    # =========================================================

    def create_config(
        self,
        name: str,
        condition: AlertCondition,
        channels: List[AlertChannelType],
        recipients: Optional[List[str]] = None,
        cooldown_seconds: int = 300,
        enabled: bool = True,
        description: Optional[str] = None,
    ) -> AlertConfig:
        with session_scope(self._session_factory) as session:
            row = AlertRepository(session).create_config(
                alert_id=new_id(),
                name=name,
                description=description,
                condition=condition.to_dict(),
                channels=[c.value for c in channels],
                recipients=list(recipients or []),
                cooldown_seconds=cooldown_seconds,
                enabled=enabled,
                created_at=self._clock.now(),
            )
            return config_from_row(row)

    def get_config(self, alert_id: str) -> Optional[AlertConfig]:
        with session_scope(self._session_factory) as session:
            row = AlertRepository(session).get_config(alert_id)
            return config_from_row(row) if row else None

    def list_configs(self, enabled_only: bool = False) -> List[AlertConfig]:
        with session_scope(self._session_factory) as session:
            repo = AlertRepository(session)
            rows = repo.list_enabled_configs() if enabled_only else repo.list_configs()
            return [config_from_row(r) for r in rows]

    def update_config(self, alert_id: str, changes: Dict[str, Any]) -> Optional[AlertConfig]:
        """
        Apply changes keyed by AlertConfig field names.

        Returns:
            The updated config, or None when the id is unknown
        """
        stored: Dict[str, Any] = {}
        for key, value in changes.items():
            if key == "condition":
                value = value.to_dict()
            elif key == "channels":
                value = [AlertChannelType(c).value for c in value]
            stored[key] = value

        with session_scope(self._session_factory) as session:
            row = AlertRepository(session).update_config(
                alert_id, stored, updated_at=self._clock.now()
            )
            return config_from_row(row) if row else None

    def delete_config(self, alert_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            return AlertRepository(session).delete_config(alert_id)

    # =========================================================
    # EVENTS
    # =========================================================

    def append_event(self, event: AlertEvent) -> AlertEvent:
        with session_scope(self._session_factory) as session:
            AlertRepository(session).append_event(
                event_id=event.id,
                alert_id=event.alert_id,
                alert_name=event.alert_name,
                condition=event.condition.to_dict(),
                status=event.status.value,
                triggered_at=event.triggered_at,
                resolved_at=event.resolved_at,
                channels=[c.value for c in event.channels],
                details=event.details,
                triggered_event_id=event.triggered_event_id,
                keep_last=self._events_per_alert,
            )
        return event

    def get_last_event(self, alert_id: str) -> Optional[AlertEvent]:
        with session_scope(self._session_factory) as session:
            row = AlertRepository(session).get_last_event(alert_id)
            return event_from_row(row) if row else None

    def list_events(self, alert_id: str, limit: int = 50) -> List[AlertEvent]:
        with session_scope(self._session_factory) as session:
            rows = AlertRepository(session).list_events(alert_id, limit=limit)
            return [event_from_row(r) for r in rows]

    def list_recent_events(self, limit: int = 20) -> List[AlertEvent]:
        with session_scope(self._session_factory) as session:
            rows = AlertRepository(session).list_recent_events(limit=limit)
            return [event_from_row(r) for r in rows]
