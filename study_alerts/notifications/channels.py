"""NotificationChannel protocol — interface for all alert delivery channels."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from study_alerts.notifications.formatting import AlertPayload


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy.

    A channel renders the channel-agnostic payload into its own format and
    delivers it. Failure is reported by returning ``False``; the dispatcher
    also counts a raised exception or a timeout as a failed channel.
    """

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'telegram', 'sms')."""
        ...

    async def send(self, recipient: str, payload: AlertPayload) -> bool:
        """Deliver one alert to *recipient*. Returns True on success."""
        ...
