"""
Alerting ORM Models.

============================================================
PURPOSE
============================================================
Durable storage for operator-defined alert configurations and
the append-only event log produced when alerts trigger or
resolve.

============================================================
DATA LIFECYCLE ROLE
============================================================
- AlertConfigModel: operator-owned, created/updated/deleted
  through the HTTP surface, long-lived
- AlertEventModel: append-only, pruned to the last N rows per
  alert; the newest row decides the alert's current state

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, JSONType, TimestampMixin


class AlertConfigModel(Base, TimestampMixin):
    """Alert configuration row."""

    __tablename__ = "pulse_alert_configs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Alert identifier (UUID string)"
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Human readable alert name"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    condition: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Tagged condition: type, target, operator, value"
    )

    channels: Mapped[List[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    recipients: Mapped[List[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    cooldown_seconds: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=300,
    )

    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<AlertConfigModel id={self.id} name={self.name!r} enabled={self.enabled}>"


class AlertEventModel(Base):
    """
    Alert event row.

    `seq` orders events per alert independently of timestamps,
    which may collide. `id` is the event identifier exposed to
    callers and is not unique: a resolution may reuse the id of
    the event it resolves.
    """

    __tablename__ = "pulse_alert_events"

    seq: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )

    alert_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        comment="Owning alert configuration id"
    )

    alert_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    condition: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="triggered | resolved"
    )

    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    channels: Mapped[List[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    triggered_event_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        comment="For resolutions: id of the triggered event being resolved"
    )

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    __table_args__ = (
        Index("ix_pulse_alert_events_alert_seq", "alert_id", "seq"),
    )

    def __repr__(self) -> str:
        return f"<AlertEventModel id={self.id} alert_id={self.alert_id} status={self.status}>"
