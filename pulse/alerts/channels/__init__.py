"""
Alert notification channels: ui, email, whatsapp.
"""

from pulse.alerts.channels.base import AlertChannel
from pulse.alerts.channels.email import EmailChannel, SmtpSettings
from pulse.alerts.channels.ui import AlertListener, UiChannel
from pulse.alerts.channels.whatsapp import WhatsAppChannel


__all__ = [
    "AlertChannel",
    "AlertListener",
    "UiChannel",
    "EmailChannel",
    "SmtpSettings",
    "WhatsAppChannel",
]
