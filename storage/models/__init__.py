"""
Storage Models Package.

ORM models for the Pulse relational store.

- base: Declarative base and mixins
- alerts: Alert configurations and alert events
"""

from storage.models.base import Base, JSONType, TimestampMixin
from storage.models.alerts import AlertConfigModel, AlertEventModel


__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "AlertConfigModel",
    "AlertEventModel",
]
