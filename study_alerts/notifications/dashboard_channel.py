"""In-process dashboard inbox — the channel a web dashboard polls."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from study_alerts.clock import Clock
    from study_alerts.notifications.formatting import AlertPayload


@dataclass(frozen=True)
class DashboardItem:
    payload: AlertPayload
    delivered_at: datetime


class DashboardChannel:
    """Keeps the most recent alerts per recipient in memory.

    Args:
        clock: Time source for delivery timestamps.
        capacity: Items kept per recipient; older ones fall off.
    """

    def __init__(self, clock: Clock, capacity: int = 200) -> None:
        self._clock = clock
        self._capacity = capacity
        self._inboxes: dict[str, deque[DashboardItem]] = {}

    @property
    def name(self) -> str:
        return "dashboard"

    async def send(self, recipient: str, payload: AlertPayload) -> bool:
        inbox = self._inboxes.setdefault(recipient, deque(maxlen=self._capacity))
        inbox.append(DashboardItem(payload=payload, delivered_at=self._clock.now()))
        return True

    def inbox(self, recipient: str) -> list[DashboardItem]:
        """Newest first."""
        return list(reversed(self._inboxes.get(recipient, ())))
