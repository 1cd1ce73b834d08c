"""
Tests for Alert Channels.

============================================================
PURPOSE
============================================================
Verify ui, email and WhatsApp delivery and their formatting.

TEST PRINCIPLES:
- send() never raises
- Missing configuration or recipients is a failed result
- WhatsApp partial failure still counts as delivered

============================================================
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from aiohttp import web
from aiohttp.test_utils import TestServer

from pulse.alerts.channels import EmailChannel, SmtpSettings, UiChannel, WhatsAppChannel
from pulse.alerts.channels.formatting import (
    format_email_html,
    format_subject,
    format_text_message,
)
from pulse.alerts.models import (
    AlertChannelType,
    AlertCondition,
    AlertEvent,
    AlertStatus,
    ConditionType,
)
from pulse.http_client import HttpClient


T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_event(status: AlertStatus = AlertStatus.TRIGGERED, **overrides) -> AlertEvent:
    fields = dict(
        id="evt-1",
        alert_id="alert-1",
        alert_name="Database <down>",
        condition=AlertCondition(ConditionType.PROBE_UNHEALTHY, "database"),
        triggered_at=T0,
        status=status,
        channels=[AlertChannelType.UI],
        details={"probe": {"name": "database", "healthy": False}},
    )
    if status == AlertStatus.RESOLVED:
        fields["resolved_at"] = T0 + timedelta(minutes=5)
    fields.update(overrides)
    return AlertEvent(**fields)


@pytest.fixture
def smtp_settings():
    return SmtpSettings(
        host="smtp.example.com",
        port=587,
        user="alerts@example.com",
        password="secret",
        sender="Pulse <alerts@example.com>",
    )


# ============================================================
# FORMATTING
# ============================================================

class TestFormatting:
    """Tests for message rendering."""

    def test_subject(self):
        assert format_subject(make_event(), "Acme") == "[ALERT] Database <down> - Acme"
        assert format_subject(make_event(AlertStatus.RESOLVED), "Acme") == "[RESOLVED] Database <down> - Acme"

    def test_email_html_escapes_and_shows_times(self):
        body = format_email_html(make_event(AlertStatus.RESOLVED), "Acme")

        assert "Database &lt;down&gt;" in body
        assert "2025-01-01 12:00:00 UTC" in body
        assert "Resolved At" in body
        assert "#16a34a" in body

    def test_text_message(self):
        text = format_text_message(make_event(), "Acme")

        assert "*[ALERT] Database <down>*" in text
        assert "*Target:* database" in text
        assert "_Acme Pulse Monitor_" in text
        assert "Resolved" not in text


# ============================================================
# UI
# ============================================================

class TestUiChannel:
    """Tests for the in-process listener channel."""

    @pytest.mark.asyncio
    async def test_delivers_to_listeners(self):
        channel = UiChannel()
        received = []
        channel.register_listener(received.append)

        result = await channel.send(make_event(), [])

        assert result.success is True
        assert result.channel == AlertChannelType.UI
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failing_listener_is_dropped(self):
        channel = UiChannel()
        channel.register_listener(MagicMock(side_effect=RuntimeError("socket closed")))
        received = []
        channel.register_listener(received.append)

        result = await channel.send(make_event(), [])

        assert result.success is True
        assert channel.listener_count == 1
        assert len(received) == 1

    def test_unregister_is_idempotent(self):
        channel = UiChannel()
        unregister = channel.register_listener(lambda e: None)

        unregister()
        unregister()

        assert channel.listener_count == 0


# ============================================================
# EMAIL
# ============================================================

class TestEmailChannel:
    """Tests for the SMTP channel."""

    @pytest.mark.asyncio
    async def test_no_recipients(self, smtp_settings):
        result = await EmailChannel(smtp_settings).send(make_event(), [])

        assert result.success is False
        assert result.error == "No recipients specified"

    @pytest.mark.asyncio
    async def test_not_configured(self):
        result = await EmailChannel(SmtpSettings(host=None)).send(make_event(), ["ops@example.com"])

        assert result.success is False
        assert result.error == "SMTP not configured"

    @pytest.mark.asyncio
    async def test_sends_with_starttls(self, smtp_settings):
        with patch("pulse.alerts.channels.email.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value
            result = await EmailChannel(smtp_settings, app_name="Acme").send(
                make_event(), ["ops@example.com", "oncall@example.com"]
            )

        assert result.success is True
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts@example.com", "secret")
        sender, recipients, payload = server.sendmail.call_args.args
        assert sender == "Pulse <alerts@example.com>"
        assert recipients == ["ops@example.com", "oncall@example.com"]
        assert "[ALERT] Database <down> - Acme" in payload

    @pytest.mark.asyncio
    async def test_secure_uses_ssl(self, smtp_settings):
        smtp_settings.secure = True
        smtp_settings.port = 465
        with patch("pulse.alerts.channels.email.smtplib.SMTP_SSL") as ssl_cls:
            result = await EmailChannel(smtp_settings).send(make_event(), ["ops@example.com"])

        assert result.success is True
        ssl_cls.return_value.starttls.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_error_is_captured(self, smtp_settings):
        with patch("pulse.alerts.channels.email.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.login.side_effect = OSError("auth failed")
            result = await EmailChannel(smtp_settings).send(make_event(), ["ops@example.com"])

        assert result.success is False
        assert result.error == "auth failed"


# ============================================================
# WHATSAPP
# ============================================================

class TestWhatsAppChannel:
    """Tests for the Evolution API channel."""

    @pytest.fixture
    def gateway(self):
        """Fake gateway: numbers starting with 'bad' get HTTP 400."""
        calls = []

        async def send_text(request):
            body = await request.json()
            calls.append((request.match_info["instance"], request.headers.get("apikey"), body))
            if body["number"].startswith("bad"):
                return web.Response(status=400, text="invalid number")
            return web.json_response({"key": {"id": "msg-1"}})

        app = web.Application()
        app.router.add_post("/message/sendText/{instance}", send_text)
        return app, calls

    async def _send(self, gateway, recipients):
        app, calls = gateway
        server = TestServer(app)
        await server.start_server()
        http = HttpClient()
        try:
            channel = WhatsAppChannel(
                str(server.make_url("/")), "secret", instance="alerts", http=http, app_name="Acme"
            )
            result = await channel.send(make_event(), recipients)
        finally:
            await http.close()
            await server.close()
        return result, calls

    @pytest.mark.asyncio
    async def test_not_configured(self):
        result = await WhatsAppChannel(None, None).send(make_event(), ["+15550100"])
        assert result.success is False
        assert result.error == "Evolution API not configured"

    @pytest.mark.asyncio
    async def test_no_recipients(self):
        result = await WhatsAppChannel("http://evo", "key").send(make_event(), [])
        assert result.error == "No recipients specified"

    @pytest.mark.asyncio
    async def test_sends_one_message_per_recipient(self, gateway):
        result, calls = await self._send(gateway, ["+15550100", "+15550101"])

        assert result.success is True
        assert result.error is None
        assert [c[2]["number"] for c in calls] == ["+15550100", "+15550101"]
        assert all(c[0] == "alerts" and c[1] == "secret" for c in calls)
        assert "*[ALERT] Database <down>*" in calls[0][2]["text"]

    @pytest.mark.asyncio
    async def test_partial_failure_is_success(self, gateway):
        result, _ = await self._send(gateway, ["+15550100", "bad-1"])

        assert result.success is True
        assert result.error == "Partial failure: bad-1: Evolution API error: 400 - invalid number"

    @pytest.mark.asyncio
    async def test_all_failing(self, gateway):
        result, _ = await self._send(gateway, ["bad-1", "bad-2"])

        assert result.success is False
        assert result.error.count("Evolution API error: 400") == 2
