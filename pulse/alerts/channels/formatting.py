"""
Alert message formatting for the email and WhatsApp channels.
"""

import html
import json
from typing import Any, Dict

from pulse.alerts.models import AlertEvent


STATUS_COLORS = {
    "triggered": "#dc2626",
    "resolved": "#16a34a",
}

STATUS_ICONS = {
    "triggered": "🚨",
    "resolved": "✅",
}


def status_label(event: AlertEvent) -> str:
    return "ALERT" if event.is_triggered else "RESOLVED"


def _timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def _pretty(details: Dict[str, Any]) -> str:
    return json.dumps(details, indent=2, default=str, ensure_ascii=False)


def format_subject(event: AlertEvent, app_name: str) -> str:
    return f"[{status_label(event)}] {event.alert_name} - {app_name}"


def format_email_html(event: AlertEvent, app_name: str) -> str:
    color = STATUS_COLORS[event.status.value]
    rows = [
        ("Condition", f"{event.condition.type.value} - {event.condition.target}"),
        ("Triggered At", _timestamp(event.triggered_at)),
    ]
    if event.resolved_at is not None:
        rows.append(("Resolved At", _timestamp(event.resolved_at)))

    detail_html = "".join(
        '<div class="detail"><div class="label">{}</div><div class="value">{}</div></div>'.format(
            html.escape(label), html.escape(value)
        )
        for label, value in rows
    )
    if event.details:
        detail_html += (
            '<div class="detail"><div class="label">Details</div>'
            '<pre style="background: #e5e7eb; padding: 8px; border-radius: 4px;">'
            f"{html.escape(_pretty(event.details))}</pre></div>"
        )

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <style>
    body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: {color}; color: white; padding: 16px; border-radius: 8px 8px 0 0; }}
    .content {{ background: #f9fafb; padding: 20px; border: 1px solid #e5e7eb; border-top: none; }}
    .label {{ color: #6b7280; font-size: 12px; text-transform: uppercase; }}
    .value {{ color: #111827; font-size: 16px; font-weight: 500; }}
    .footer {{ margin-top: 20px; font-size: 12px; color: #9ca3af; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1 style="margin: 0; font-size: 18px;">[{status_label(event)}] {html.escape(event.alert_name)}</h1></div>
    <div class="content">{detail_html}</div>
    <div class="footer">Sent by {html.escape(app_name)} Pulse Monitor</div>
  </div>
</body>
</html>"""


def format_text_message(event: AlertEvent, app_name: str) -> str:
    """WhatsApp-flavoured plain text (`*bold*`, `_italic_`)."""
    lines = [
        f"{STATUS_ICONS[event.status.value]} *[{status_label(event)}] {event.alert_name}*",
        "",
        f"📍 *Condition:* {event.condition.type.value}",
        f"🎯 *Target:* {event.condition.target}",
        f"🕐 *Triggered:* {_timestamp(event.triggered_at)}",
    ]
    if event.resolved_at is not None:
        lines.append(f"✅ *Resolved:* {_timestamp(event.resolved_at)}")
    if event.details:
        lines.extend(["", "📋 *Details:*", _pretty(event.details)])
    lines.extend(["", f"_{app_name} Pulse Monitor_"])
    return "\n".join(lines)
