"""Telegram implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import telegram
from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from study_alerts.notifications.formatting import render_markdown

if TYPE_CHECKING:
    from study_alerts.notifications.formatting import AlertPayload

logger = logging.getLogger(__name__)


class TelegramChannel:
    """Sends alerts via the Telegram Bot API.

    The recipient is a chat ID. Alert actions become one row of inline
    keyboard buttons whose callback data the bot's handlers route back to
    ``mark_alert_read``.
    """

    def __init__(self, bot: telegram.Bot) -> None:
        self._bot = bot

    @property
    def name(self) -> str:
        return "telegram"

    async def send(self, recipient: str, payload: AlertPayload) -> bool:
        try:
            markup = None
            if payload.actions:
                markup = InlineKeyboardMarkup([[
                    InlineKeyboardButton(text=action.label, callback_data=action.callback_data)
                    for action in payload.actions
                ]])
            await self._bot.send_message(
                chat_id=int(recipient),
                text=render_markdown(payload),
                parse_mode="Markdown",
                reply_markup=markup,
                disable_web_page_preview=True,
            )
            return True
        except Exception:
            logger.exception(
                "TelegramChannel.send failed for alert %s to chat %s", payload.alert_id, recipient
            )
            return False
