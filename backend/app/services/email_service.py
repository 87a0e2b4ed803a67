"""
Insights email rendering and delivery through Resend.
"""

import html
import logging
from typing import Optional

import resend

from app.config import get_settings
from app.exceptions import ConfigurationError, EmailDeliveryError

logger = logging.getLogger(__name__)

SCHEDULED_FOOTER = (
    "You are receiving this because you subscribed to {frequency} Google Ads insights "
    "for this account at {send_time} ({time_zone})."
)
TEST_FOOTER = "This is a one-off test email for your Google Ads insights."


def _count(value) -> str:
    value = value or 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{value:,}"


def _money(value) -> str:
    return f"${float(value or 0):.2f}"


def _percent(ratio) -> str:
    return f"{float(ratio or 0) * 100:.2f}%"


# (metric name, label, formatter) in display order
METRIC_ROWS = [
    ("conversions", "Conversions", _count),
    ("spend", "Spend", _money),
    ("impressions", "Impressions", _count),
    ("clicks", "Clicks", _count),
    ("cpm", "CPM", _money),
    ("ctr", "CTR", _percent),
]


def insights_subject(title: str, account_name: Optional[str]) -> str:
    return f"{title} - {account_name}" if account_name else title


def render_insights_html(
    title: str,
    account_name: Optional[str],
    start_date: str,
    end_date: str,
    metrics: dict,
    selected_metrics: list[str],
    footer: str,
) -> str:
    """Summary table with one row per selected metric."""
    rows = "".join(
        f'<tr><td><strong>{label}</strong></td>'
        f'<td style="text-align:right">{fmt(metrics.get(name))}</td></tr>'
        for name, label, fmt in METRIC_ROWS
        if name in selected_metrics
    )
    heading = html.escape(insights_subject(title, account_name))
    return f"""
        <h2 style="margin:0 0 8px 0;">{heading}</h2>
        <p style="margin:0 0 16px 0; color:#555">Period: {start_date} to {end_date}</p>
        <table style="border-collapse:collapse; width:100%">
          <tbody>{rows}</tbody>
        </table>
        <p style="margin-top:16px; color:#555">{html.escape(footer)}</p>
        """


def send_insights_email(to_email: str, subject: str, html_body: str) -> str:
    """Send via Resend. Returns the provider message id."""
    settings = get_settings()
    if not settings.resend_api_key:
        raise ConfigurationError("RESEND_API_KEY not configured")

    resend.api_key = settings.resend_api_key
    params = {
        "from": settings.from_email,
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    }
    try:
        result = resend.Emails.send(params)
    except Exception as e:
        logger.error(f"Failed to send insights email to {to_email}: {e}")
        raise EmailDeliveryError(f"Email delivery failed: {e}") from e
    message_id = (result or {}).get("id", "") if isinstance(result, dict) else getattr(result, "id", "")
    logger.info(f"Insights email sent to {to_email} ({message_id})")
    return message_id
