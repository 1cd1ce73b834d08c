"""
Alert Repository.

============================================================
PURPOSE
============================================================
Data access for alert configurations and the alert event log.

============================================================
DATA LIFECYCLE
============================================================
- Configs: mutable, operator-owned
- Events: append-only; each append prunes the alert's log to
  the newest `keep_last` rows

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from storage.models.alerts import AlertConfigModel, AlertEventModel
from storage.repositories.base import BaseRepository


_UPDATABLE_FIELDS = (
    "name",
    "description",
    "condition",
    "channels",
    "recipients",
    "cooldown_seconds",
    "enabled",
)


class AlertRepository(BaseRepository[AlertConfigModel]):
    """Repository for AlertConfigModel and AlertEventModel rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, AlertConfigModel, "AlertRepository")

    # =========================================================
    # CONFIG OPERATIONS
    # =========================================================

    def create_config(
        self,
        alert_id: str,
        name: str,
        condition: Dict[str, Any],
        channels: List[str],
        recipients: List[str],
        cooldown_seconds: int,
        enabled: bool,
        created_at: datetime,
        description: Optional[str] = None,
    ) -> AlertConfigModel:
        entity = AlertConfigModel(
            id=alert_id,
            name=name,
            description=description,
            condition=condition,
            channels=list(channels),
            recipients=list(recipients),
            cooldown_seconds=cooldown_seconds,
            enabled=enabled,
            created_at=created_at,
            updated_at=created_at,
        )
        self._add(entity)
        self._logger.info(f"Alert config created: {name} ({alert_id})")
        return entity

    def get_config(self, alert_id: str) -> Optional[AlertConfigModel]:
        return self._get_by_id(alert_id)

    def list_configs(self) -> List[AlertConfigModel]:
        stmt = select(AlertConfigModel).order_by(AlertConfigModel.created_at, AlertConfigModel.id)
        return self._scalars(stmt)

    def list_enabled_configs(self) -> List[AlertConfigModel]:
        stmt = (
            select(AlertConfigModel)
            .where(AlertConfigModel.enabled.is_(True))
            .order_by(AlertConfigModel.created_at, AlertConfigModel.id)
        )
        return self._scalars(stmt)

    def update_config(
        self,
        alert_id: str,
        changes: Dict[str, Any],
        updated_at: datetime,
    ) -> Optional[AlertConfigModel]:
        """
        Apply field changes to a config.

        Unknown keys are ignored.

        Returns:
            The updated entity, or None when the id is unknown
        """
        entity = self._get_by_id(alert_id)
        if entity is None:
            return None

        for field_name in _UPDATABLE_FIELDS:
            if field_name in changes:
                setattr(entity, field_name, changes[field_name])
        entity.updated_at = updated_at

        with self._guard("update_config", {"id": alert_id}):
            self._session.flush()
        return entity

    def delete_config(self, alert_id: str) -> bool:
        """Delete a config and its events. Returns False when unknown."""
        entity = self._get_by_id(alert_id)
        if entity is None:
            return False

        with self._guard("delete_config", {"id": alert_id}):
            self._session.execute(
                delete(AlertEventModel).where(AlertEventModel.alert_id == alert_id)
            )

        self._delete(entity)
        self._logger.info(f"Alert config deleted: {alert_id}")
        return True

    # =========================================================
    # EVENT OPERATIONS
    # =========================================================

    def append_event(
        self,
        event_id: str,
        alert_id: str,
        alert_name: str,
        condition: Dict[str, Any],
        status: str,
        triggered_at: datetime,
        channels: List[str],
        resolved_at: Optional[datetime] = None,
        details: Optional[Dict[str, Any]] = None,
        triggered_event_id: Optional[str] = None,
        keep_last: int = 100,
    ) -> AlertEventModel:
        """Append an event and prune the alert's log to `keep_last` rows."""
        entity = AlertEventModel(
            id=event_id,
            alert_id=alert_id,
            alert_name=alert_name,
            condition=condition,
            status=status,
            triggered_at=triggered_at,
            resolved_at=resolved_at,
            channels=list(channels),
            details=details,
            triggered_event_id=triggered_event_id,
        )
        with self._guard("append_event", {"alert_id": alert_id}):
            self._session.add(entity)
            self._session.flush()
            self._prune_events(alert_id, keep_last)
        return entity

    def _prune_events(self, alert_id: str, keep_last: int) -> None:
        cutoff = (
            select(AlertEventModel.seq)
            .where(AlertEventModel.alert_id == alert_id)
            .order_by(desc(AlertEventModel.seq))
            .offset(keep_last)
            .limit(1)
        )
        boundary = self._session.execute(cutoff).scalar()
        if boundary is None:
            return

        self._session.execute(
            delete(AlertEventModel).where(
                AlertEventModel.alert_id == alert_id,
                AlertEventModel.seq <= boundary,
            )
        )

    def get_last_event(self, alert_id: str) -> Optional[AlertEventModel]:
        stmt = (
            select(AlertEventModel)
            .where(AlertEventModel.alert_id == alert_id)
            .order_by(desc(AlertEventModel.seq))
            .limit(1)
        )
        return self._first(stmt)

    def list_events(self, alert_id: str, limit: int = 50) -> List[AlertEventModel]:
        """Events for one alert, newest first."""
        stmt = (
            select(AlertEventModel)
            .where(AlertEventModel.alert_id == alert_id)
            .order_by(desc(AlertEventModel.seq))
            .limit(limit)
        )
        return self._scalars(stmt)

    def list_recent_events(self, limit: int = 20) -> List[AlertEventModel]:
        """Events across all alerts, newest first."""
        stmt = select(AlertEventModel).order_by(desc(AlertEventModel.seq)).limit(limit)
        return self._scalars(stmt)
