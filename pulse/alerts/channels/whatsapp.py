"""
WhatsApp Alert Channel.

============================================================
PURPOSE
============================================================
Sends alert notices through the Evolution API gateway:
`POST {api_url}/message/sendText/{instance}` once per
recipient, authenticated with the `apikey` header.

- All recipients failing -> failed result
- Some recipients failing -> success with "Partial failure: ..."

============================================================
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from pulse.alerts.channels.base import AlertChannel
from pulse.alerts.channels.formatting import format_text_message
from pulse.alerts.models import AlertChannelType, AlertEvent, ChannelResult
from pulse.http_client import HttpClient, timeout


logger = logging.getLogger(__name__)


class WhatsAppChannel(AlertChannel):
    """Evolution API text message channel."""

    channel_type = AlertChannelType.WHATSAPP

    def __init__(
        self,
        api_url: Optional[str],
        api_key: Optional[str],
        instance: str = "pulse-alerts",
        http: Optional[HttpClient] = None,
        app_name: str = "Pulse",
        request_timeout_seconds: float = 10.0,
    ) -> None:
        self._api_url = api_url.rstrip("/") if api_url else None
        self._api_key = api_key
        self._instance = instance
        self._http = http or HttpClient()
        self._app_name = app_name
        self._request_timeout = request_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self._api_url and self._api_key)

    async def _deliver(self, event: AlertEvent, recipients: List[str]) -> ChannelResult:
        if not recipients:
            return self.failure("No recipients specified")
        if not self.configured:
            return self.failure("Evolution API not configured")

        text = format_text_message(event, self._app_name)
        errors: List[str] = []
        for number in recipients:
            error = await self._send_message(number, text)
            if error:
                errors.append(f"{number}: {error}")

        if len(errors) == len(recipients):
            return self.failure("; ".join(errors))
        if errors:
            return self.success(f"Partial failure: {'; '.join(errors)}")
        return self.success()

    async def _send_message(self, number: str, text: str) -> Optional[str]:
        """Send one message. Returns an error string or None."""
        session = await self._http.get_session()
        url = f"{self._api_url}/message/sendText/{self._instance}"
        try:
            async with session.post(
                url,
                json={"number": number, "text": text},
                headers={"apikey": self._api_key},
                timeout=timeout(self._request_timeout),
            ) as response:
                if 200 <= response.status < 300:
                    return None
                body = await response.text()
                logger.error(f"Evolution API error: {response.status} - {body}")
                return f"Evolution API error: {response.status} - {body}"
        except asyncio.TimeoutError:
            logger.error(f"WhatsApp message to {number} timed out")
            return f"Timed out after {self._request_timeout:g}s"
        except aiohttp.ClientError as e:
            logger.error(f"Error sending WhatsApp message: {e}")
            return str(e) or e.__class__.__name__
