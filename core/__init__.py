"""
Core Module Package.

Process-level infrastructure shared by every Pulse component.

Components:
- clock: Unified, mockable time abstraction
- settings: Environment-provided configuration
- logging_setup: Root logger configuration
"""

from .clock import (
    ClockProtocol,
    SystemClock,
    MockClock,
    to_iso8601,
    from_iso8601,
    ensure_utc,
    to_timestamp_ms,
)
from .settings import Settings
from .logging_setup import setup_logging


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "to_iso8601",
    "from_iso8601",
    "ensure_utc",
    "to_timestamp_ms",
    "Settings",
    "setup_logging",
]
