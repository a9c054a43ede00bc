"""AlertExecutor — claims one alert, delivers it and records the outcome."""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from study_alerts.errors import DispatchError
from study_alerts.owners import OwnerProfile
from study_alerts.scheduler.recent import RecentlyProcessed

if TYPE_CHECKING:
    from datetime import datetime

    from study_alerts.alerts.models import Alert
    from study_alerts.alerts.store import AlertRepository
    from study_alerts.clock import Clock
    from study_alerts.notifications.dispatcher import Dispatcher
    from study_alerts.owners import OwnerDirectory

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"


class AlertExecutor:
    """Delivers alerts for both the sweep and the hint timers.

    Whoever wins the store's claim sends the alert; everyone else gets
    ``SKIPPED``. Dispatch failures never raise out of ``deliver``: they are
    recorded on the alert with a backoff for the retry pass.

    Args:
        alerts: Alert store.
        owners: Owner directory for recipient addresses.
        dispatcher: Sends the alert on its channels.
        clock: Time source.
        max_retries: Failed attempts after which an alert is left ``failed``.
        retry_backoff_seconds: Base delay before the first retry; doubles
            with each further attempt.
        recent: Recently-processed guard (a fresh one when omitted).
    """

    def __init__(
        self,
        alerts: AlertRepository,
        owners: OwnerDirectory,
        dispatcher: Dispatcher,
        clock: Clock,
        max_retries: int = 3,
        retry_backoff_seconds: float = 60.0,
        recent: RecentlyProcessed | None = None,
    ) -> None:
        self._alerts = alerts
        self._owners = owners
        self._dispatcher = dispatcher
        self._clock = clock
        self._max_retries = max_retries
        self._backoff = retry_backoff_seconds
        self._recent = recent if recent is not None else RecentlyProcessed()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def backoff_for(self, attempts: int) -> timedelta:
        """Delay before the next attempt once *attempts* have failed."""
        return timedelta(seconds=self._backoff * 2 ** max(attempts - 1, 0))

    async def deliver(self, alert_id: str, *, retry: bool = False) -> DeliveryOutcome:
        """Claim and deliver one alert.

        Args:
            alert_id: The alert to deliver.
            retry: Claim from ``failed`` instead of ``pending``.
        """
        if not retry and alert_id in self._recent:
            return DeliveryOutcome.SKIPPED

        now = self._clock.now()
        if retry:
            claimed = await self._alerts.claim_retry(alert_id, now, self._max_retries)
        else:
            claimed = await self._alerts.claim(alert_id, now)
        if not claimed:
            logger.debug("Alert %s already claimed or no longer deliverable", alert_id)
            return DeliveryOutcome.SKIPPED

        alert = await self._alerts.get_alert(alert_id)
        if alert is None:
            logger.warning("Claimed alert vanished: %s", alert_id)
            return DeliveryOutcome.SKIPPED

        owner = await self._owners.get(alert.owner_id) or OwnerProfile(owner_id=alert.owner_id)
        logger.info(
            "Delivering alert %s (%s, task %s) to %s via %s",
            alert.id,
            alert.kind.value,
            alert.task_id,
            alert.owner_id,
            ", ".join(alert.channels) or "no channels",
        )
        try:
            result = await self._dispatcher.dispatch(alert, owner)
            result.raise_for_status()
        except DispatchError as exc:
            return await self._record_failure(alert, exc.reason)

        if not await self._alerts.mark_sent(alert.id, self._clock.now()):
            logger.warning("Alert %s was delivered but could not be marked sent", alert.id)
        self._recent.add(alert.id)
        return DeliveryOutcome.SENT

    async def _record_failure(self, alert: Alert, reason: str) -> DeliveryOutcome:
        now = self._clock.now()
        attempts = alert.attempts + 1
        exhausted = attempts >= self._max_retries
        next_attempt_at: datetime | None = None if exhausted else now + self.backoff_for(attempts)
        await self._alerts.mark_failed(alert.id, reason, now, next_attempt_at)

        if exhausted:
            self._recent.add(alert.id)
            logger.error(
                "Delivery failed for alert %s (task %s) after %d attempt(s): %s",
                alert.id,
                alert.task_id,
                attempts,
                reason,
            )
            return DeliveryOutcome.EXHAUSTED
        logger.warning(
            "Alert %s failed (attempt %d/%d), retrying after %s: %s",
            alert.id,
            attempts,
            self._max_retries,
            next_attempt_at,
            reason,
        )
        return DeliveryOutcome.FAILED
