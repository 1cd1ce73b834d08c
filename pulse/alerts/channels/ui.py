"""
UI alert channel.

Pushes events to in-process listeners (the SSE stream registers
one per connected client). A listener that raises is dropped.
"""

import logging
import threading
from typing import Callable, List

from pulse.alerts.channels.base import AlertChannel
from pulse.alerts.models import AlertChannelType, AlertEvent, ChannelResult


logger = logging.getLogger(__name__)

AlertListener = Callable[[AlertEvent], None]


class UiChannel(AlertChannel):
    """Broadcasts alert events to registered listeners."""

    channel_type = AlertChannelType.UI

    def __init__(self) -> None:
        self._listeners: List[AlertListener] = []
        self._lock = threading.Lock()

    def register_listener(self, listener: AlertListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that unregisters the listener (idempotent)
        """
        with self._lock:
            self._listeners.append(listener)

        def unregister() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unregister

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def _deliver(self, event: AlertEvent, recipients: List[str]) -> ChannelResult:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Dropping failed UI listener: {e}")
                with self._lock:
                    if listener in self._listeners:
                        self._listeners.remove(listener)

        return self.success()
