"""
Alert Channel base class.

A channel delivers one AlertEvent to its recipients and reports
the outcome as a ChannelResult. `send()` never raises: failures
are captured into the result's `error`.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from pulse.alerts.models import AlertChannelType, AlertEvent, ChannelResult


logger = logging.getLogger(__name__)


class AlertChannel(ABC):
    """Base class for notification channels."""

    channel_type: AlertChannelType

    @abstractmethod
    async def _deliver(self, event: AlertEvent, recipients: List[str]) -> ChannelResult:
        """Deliver the event. May raise; `send()` converts errors."""

    async def send(self, event: AlertEvent, recipients: List[str]) -> ChannelResult:
        try:
            return await self._deliver(event, recipients)
        except Exception as e:
            logger.error(f"{self.channel_type.value} channel failed for alert {event.alert_id}: {e}")
            return self.failure(str(e) or e.__class__.__name__)

    def success(self, error: Optional[str] = None) -> ChannelResult:
        return ChannelResult(channel=self.channel_type, success=True, error=error)

    def failure(self, error: str) -> ChannelResult:
        return ChannelResult(channel=self.channel_type, success=False, error=error)

    async def close(self) -> None:
        """Release channel resources."""
