"""AlertSweeper — the periodic reconciliation pass over due and retryable alerts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from study_alerts.scheduler.executor import DeliveryOutcome

if TYPE_CHECKING:
    from datetime import datetime

    from study_alerts.alerts.store import AlertRepository
    from study_alerts.clock import Clock
    from study_alerts.scheduler.executor import AlertExecutor

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Counters for one sweep."""

    started_at: datetime
    owners: int = 0
    released: int = 0
    owner_errors: int = 0
    outcomes: dict[DeliveryOutcome, int] = field(
        default_factory=lambda: dict.fromkeys(DeliveryOutcome, 0)
    )

    @property
    def sent(self) -> int:
        return self.outcomes[DeliveryOutcome.SENT]

    @property
    def failed(self) -> int:
        return self.outcomes[DeliveryOutcome.FAILED] + self.outcomes[DeliveryOutcome.EXHAUSTED]

    def add(self, outcomes: list[DeliveryOutcome]) -> None:
        for outcome in outcomes:
            self.outcomes[outcome] += 1


class AlertSweeper:
    """Finds every due or retryable alert and hands it to the executor.

    The sweep is the authoritative trigger: hint timers only make delivery
    more punctual. After a restart the first sweep delivers everything that
    came due while the process was down.

    Args:
        alerts: Alert store.
        executor: Delivers individual alerts.
        clock: Time source.
        claim_lease_seconds: Claims older than this are considered abandoned.
    """

    def __init__(
        self,
        alerts: AlertRepository,
        executor: AlertExecutor,
        clock: Clock,
        claim_lease_seconds: float = 60.0,
    ) -> None:
        self._alerts = alerts
        self._executor = executor
        self._clock = clock
        self._lease = timedelta(seconds=claim_lease_seconds)

    async def sweep(self) -> SweepReport:
        now = self._clock.now()
        report = SweepReport(started_at=now)
        report.released = await self._alerts.release_stale_claims(now - self._lease)

        owner_ids = await self._alerts.list_owner_ids()
        report.owners = len(owner_ids)
        for owner_id in owner_ids:
            try:
                await self._sweep_owner(owner_id, now, report)
            except Exception:
                report.owner_errors += 1
                logger.exception("Sweep failed for owner %s", owner_id)

        if report.sent or report.failed or report.owner_errors:
            logger.info(
                "Sweep done: %d sent, %d failed, %d owner error(s) across %d owner(s)",
                report.sent,
                report.failed,
                report.owner_errors,
                report.owners,
            )
        return report

    async def _sweep_owner(self, owner_id: str, now: datetime, report: SweepReport) -> None:
        due = await self._alerts.due_alerts(owner_id, now)
        if due:
            report.add(await asyncio.gather(*(self._executor.deliver(a.id) for a in due)))

        retryable = await self._alerts.retryable_alerts(
            owner_id, now, self._executor.max_retries
        )
        if retryable:
            report.add(
                await asyncio.gather(
                    *(self._executor.deliver(a.id, retry=True) for a in retryable)
                )
            )
