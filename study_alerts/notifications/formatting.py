"""Alert payloads and their per-channel renderings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from telegram.helpers import escape_markdown

from study_alerts.alerts.models import AlertKind
from study_alerts.tasks.models import Priority

if TYPE_CHECKING:
    from study_alerts.alerts.models import Alert

# Maximum SMS body length (~10 segments). Longer messages risk delivery issues.
MAX_SMS_LENGTH = 1600

PRIORITY_INDICATORS = {
    Priority.LOW: "🔵",
    Priority.MEDIUM: "🟡",
    Priority.HIGH: "🟠",
    Priority.CRITICAL: "🔴",
}

READ_ACTION = "read"


@dataclass(frozen=True)
class AlertAction:
    """A button offered alongside the alert."""

    label: str
    callback_data: str


@dataclass(frozen=True)
class AlertPayload:
    """Channel-agnostic content of one alert notification."""

    alert_id: str
    title: str
    body: str
    priority: Priority
    kind: AlertKind
    actions: tuple[AlertAction, ...] = field(default_factory=tuple)

    @property
    def indicator(self) -> str:
        if self.kind == AlertKind.EMERGENCY:
            return "🚨"
        return PRIORITY_INDICATORS.get(self.priority, "📢")

    @property
    def heading(self) -> str:
        if self.kind == AlertKind.EMERGENCY:
            return f"EMERGENCY: {self.title}"
        if self.kind == AlertKind.URGENT:
            return f"Starting soon: {self.title}"
        return f"Reminder: {self.title}"


def action_callback(alert_id: str, action: str) -> str:
    """Callback data for an alert button, e.g. ``alr:<id>:read`` (< 64 bytes)."""
    return f"alr:{alert_id}:{action}"


def parse_action_callback(data: str) -> tuple[str, str] | None:
    """Inverse of ``action_callback``; None if *data* is not an alert callback."""
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != "alr" or not parts[1]:
        return None
    return parts[1], parts[2]


def build_payload(alert: Alert) -> AlertPayload:
    return AlertPayload(
        alert_id=alert.id,
        title=alert.title,
        body=alert.message,
        priority=alert.priority,
        kind=alert.kind,
        actions=(AlertAction("Mark as read", action_callback(alert.id, READ_ACTION)),),
    )


def render_markdown(payload: AlertPayload) -> str:
    """Telegram legacy Markdown."""
    return (
        f"{payload.indicator} *{escape_markdown(payload.heading)}*\n"
        f"{escape_markdown(payload.body)}\n"
        f"_Priority: {payload.priority.value.upper()}_"
    )


def render_mrkdwn(payload: AlertPayload) -> str:
    """Slack mrkdwn."""
    return f"{payload.indicator} *{payload.heading}*\n{payload.body}"


def render_plain(payload: AlertPayload, limit: int | None = None) -> str:
    """Plain text, truncated to *limit* characters when given."""
    text = f"[{payload.priority.value.upper()}] {payload.heading}: {payload.body}"
    if limit is not None and len(text) > limit:
        text = text[: limit - 3] + "..."
    return text
