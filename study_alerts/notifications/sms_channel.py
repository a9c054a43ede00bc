"""SMS implementation of the NotificationChannel protocol (Telnyx over aiohttp)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiohttp

from study_alerts.notifications.formatting import MAX_SMS_LENGTH, render_plain

if TYPE_CHECKING:
    from study_alerts.notifications.formatting import AlertPayload

logger = logging.getLogger(__name__)

TELNYX_API_URL = "https://api.telnyx.com/v2/messages"


class TelnyxClient:
    """Minimal Telnyx messaging client.

    Args:
        api_key: Telnyx API key.
        from_number: Sender phone number in E.164 format.
    """

    def __init__(self, api_key: str, from_number: str) -> None:
        self._api_key = api_key
        self._from_number = from_number
        self._session: aiohttp.ClientSession | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._from_number)

    def _get_session(self) -> aiohttp.ClientSession:
        """Return (and lazily create) the client's aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def send_sms(self, to: str, body: str) -> bool:
        """Send an SMS. Returns True on success."""
        if not self.configured:
            logger.error("SMS not configured — missing TELNYX_API_KEY or TELNYX_PHONE_NUMBER")
            return False

        payload = {"from": self._from_number, "to": to, "text": body, "type": "SMS"}
        session = self._get_session()
        try:
            async with session.post(TELNYX_API_URL, json=payload) as resp:
                if resp.status == 200:
                    logger.info("SMS sent to %s (%d chars)", to, len(body))
                    return True
                text = await resp.text()
                logger.error("SMS send failed: status=%d body=%s", resp.status, text[:200])
                return False
        except aiohttp.ClientError:
            logger.exception("SMS send failed (network error)")
            return False


class SMSChannel:
    """Sends alerts as plain-text SMS. Buttons are dropped."""

    def __init__(self, client: TelnyxClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "sms"

    async def send(self, recipient: str, payload: AlertPayload) -> bool:
        return await self._client.send_sms(recipient, render_plain(payload, MAX_SMS_LENGTH))
