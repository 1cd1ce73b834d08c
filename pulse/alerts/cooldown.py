"""
Alert cooldown tracking.

A cooldown is an `alert_id -> expires_at` entry set when an alert
triggers. Expiry is checked lazily on read; there is no sweep and
no explicit clear.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from core.clock import ClockProtocol, SystemClock


class CooldownTracker:
    """In-process per-alert cooldown map."""

    def __init__(self, clock: Optional[ClockProtocol] = None) -> None:
        self._clock = clock or SystemClock()
        self._expires: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def start(self, alert_id: str, seconds: int) -> None:
        if seconds <= 0:
            return
        with self._lock:
            self._expires[alert_id] = self._clock.now() + timedelta(seconds=seconds)

    def is_active(self, alert_id: str) -> bool:
        with self._lock:
            expires_at = self._expires.get(alert_id)
            if expires_at is None:
                return False
            if self._clock.now() >= expires_at:
                del self._expires[alert_id]
                return False
            return True

    def remaining(self, alert_id: str) -> float:
        """Seconds left on the cooldown, 0 when none is active."""
        with self._lock:
            expires_at = self._expires.get(alert_id)
        if expires_at is None:
            return 0.0
        return max((expires_at - self._clock.now()).total_seconds(), 0.0)

    def forget(self, alert_id: str) -> None:
        """Drop the entry of a deleted alert."""
        with self._lock:
            self._expires.pop(alert_id, None)
