"""Dispatcher — fans one alert out to its channels and records the outcome."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from study_alerts.errors import DispatchError, StoreUnavailableError
from study_alerts.notifications.formatting import build_payload
from study_alerts.notifications.history import NotificationRecord

if TYPE_CHECKING:
    from study_alerts.alerts.models import Alert
    from study_alerts.clock import Clock
    from study_alerts.notifications.formatting import AlertPayload
    from study_alerts.notifications.history import NotificationHistory
    from study_alerts.notifications.router import NotificationRouter
    from study_alerts.owners import OwnerProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    ok: bool
    error: str | None = None


@dataclass
class DispatchResult:
    """Per-channel outcomes of one dispatch.

    The alert counts as delivered when at least one channel accepted it.
    """

    alert_id: str
    results: list[ChannelResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return any(r.ok for r in self.results)

    @property
    def delivered(self) -> list[str]:
        return [r.channel for r in self.results if r.ok]

    @property
    def failed(self) -> dict[str, str]:
        return {r.channel: r.error or "failed" for r in self.results if not r.ok}

    @property
    def error_summary(self) -> str:
        if not self.results:
            return "no channels"
        return "; ".join(f"{name}: {reason}" for name, reason in self.failed.items())

    def raise_for_status(self) -> None:
        """Raise ``DispatchError`` unless at least one channel succeeded."""
        if not self.ok:
            raise DispatchError(self.alert_id, self.error_summary)


class Dispatcher:
    """Sends alerts through the router's channels.

    Args:
        router: Channel registry.
        history: Notification log every dispatch is appended to.
        clock: Time source for history records.
        timeout_seconds: Upper bound for a single channel's ``send``.
    """

    def __init__(
        self,
        router: NotificationRouter,
        history: NotificationHistory,
        clock: Clock,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._router = router
        self._history = history
        self._clock = clock
        self._timeout = timeout_seconds

    async def dispatch(self, alert: Alert, owner: OwnerProfile) -> DispatchResult:
        """Deliver *alert* on every channel it names, concurrently.

        Never raises for channel problems: unknown channels, exceptions,
        timeouts and ``False`` returns all become failed ``ChannelResult``s.
        """
        payload = build_payload(alert)
        channels = list(dict.fromkeys(alert.channels))
        results = await asyncio.gather(
            *(self._send_one(name, owner, payload) for name in channels)
        )
        result = DispatchResult(alert_id=alert.id, results=list(results))

        if result.ok:
            logger.info(
                "Alert %s delivered via %s", alert.id, ", ".join(result.delivered)
            )
        else:
            logger.warning("Alert %s not delivered: %s", alert.id, result.error_summary)

        await self._record(alert, result)
        return result

    async def _send_one(
        self, name: str, owner: OwnerProfile, payload: AlertPayload
    ) -> ChannelResult:
        channel = self._router.get_channel(name)
        if channel is None:
            return ChannelResult(name, False, "channel not registered")
        recipient = owner.address_for(name)
        if not recipient:
            return ChannelResult(name, False, "no address")
        try:
            ok = await asyncio.wait_for(channel.send(recipient, payload), self._timeout)
        except TimeoutError:
            logger.warning("Channel %s timed out for alert %s", name, payload.alert_id)
            return ChannelResult(name, False, "timeout")
        except Exception as exc:
            logger.exception("Channel %s raised for alert %s", name, payload.alert_id)
            return ChannelResult(name, False, f"{type(exc).__name__}: {exc}")
        if not ok:
            return ChannelResult(name, False, "rejected")
        return ChannelResult(name, True)

    async def _record(self, alert: Alert, result: DispatchResult) -> None:
        record = NotificationRecord(
            owner_id=alert.owner_id,
            alert_id=alert.id,
            task_id=alert.task_id,
            kind=alert.kind.value,
            priority=alert.priority.value,
            title=alert.title,
            created_at=self._clock.now(),
            delivered=result.delivered,
            failed=result.failed,
            ok=result.ok,
        )
        try:
            await self._history.append(record)
        except StoreUnavailableError:
            logger.exception("Could not record notification history for alert %s", alert.id)
