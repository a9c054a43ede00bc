"""Slack implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from study_alerts.notifications.formatting import render_mrkdwn

if TYPE_CHECKING:
    from slack_sdk.web.async_client import AsyncWebClient

    from study_alerts.notifications.formatting import AlertPayload

logger = logging.getLogger(__name__)


class SlackChannel:
    """Sends alerts as Slack direct messages with Block Kit buttons."""

    def __init__(self, client: AsyncWebClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "slack"

    async def _open_dm(self, user_id: str) -> str | None:
        """Open (or retrieve) a DM channel with a user. Returns channel ID."""
        try:
            resp = await self._client.conversations_open(users=[user_id])
            return resp["channel"]["id"]
        except Exception:
            logger.exception("SlackChannel: failed to open DM for user_id=%s", user_id)
            return None

    @staticmethod
    def _blocks(payload: AlertPayload) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": render_mrkdwn(payload)}},
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Priority: {payload.priority.value}"},
                ],
            },
        ]
        if payload.actions:
            blocks.append({
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": action.label},
                        "action_id": action.callback_data,
                        "value": action.callback_data,
                    }
                    for action in payload.actions
                ],
            })
        return blocks

    async def send(self, recipient: str, payload: AlertPayload) -> bool:
        channel_id = await self._open_dm(recipient)
        if not channel_id:
            return False
        try:
            await self._client.chat_postMessage(
                channel=channel_id,
                text=render_mrkdwn(payload),
                blocks=self._blocks(payload),
            )
            return True
        except Exception:
            logger.exception(
                "SlackChannel.send failed for alert %s to user %s", payload.alert_id, recipient
            )
            return False
