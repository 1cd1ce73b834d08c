"""
Email Alert Channel.

============================================================
PURPOSE
============================================================
Sends alert and resolution notices over SMTP.

- STARTTLS on plain ports, implicit TLS when `secure` is set
- HTML body coloured by status
- The blocking smtplib session runs in a worker thread

============================================================
"""

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from pulse.alerts.channels.base import AlertChannel
from pulse.alerts.channels.formatting import format_email_html, format_subject
from pulse.alerts.models import AlertChannelType, AlertEvent, ChannelResult


logger = logging.getLogger(__name__)


@dataclass
class SmtpSettings:
    host: Optional[str]
    port: int = 587
    secure: bool = False
    user: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = None
    timeout_seconds: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)


class EmailChannel(AlertChannel):
    """SMTP email channel."""

    channel_type = AlertChannelType.EMAIL

    def __init__(self, smtp: SmtpSettings, app_name: str = "Pulse") -> None:
        self._smtp = smtp
        self._app_name = app_name

    async def _deliver(self, event: AlertEvent, recipients: List[str]) -> ChannelResult:
        if not recipients:
            return self.failure("No recipients specified")
        if not self._smtp.configured:
            return self.failure("SMTP not configured")

        message = self._build_message(event, recipients)
        await asyncio.to_thread(self._send, message, recipients)
        logger.info(f"Alert email sent for {event.alert_name} to {len(recipients)} recipient(s)")
        return self.success()

    def _build_message(self, event: AlertEvent, recipients: List[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = format_subject(event, self._app_name)
        msg["From"] = self._smtp.sender or self._smtp.user
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(format_email_html(event, self._app_name), "html"))
        return msg

    def _send(self, message: MIMEMultipart, recipients: List[str]) -> None:
        smtp = self._smtp
        if smtp.secure:
            server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=smtp.timeout_seconds)
        else:
            server = smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout_seconds)

        with server:
            if not smtp.secure:
                server.starttls()
            server.login(smtp.user, smtp.password)
            server.sendmail(message["From"], recipients, message.as_string())
