"""SchedulerEngine — APScheduler lifecycle, the sweep job and hint timers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from study_alerts.errors import StudyAlertError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from study_alerts.alerts.models import Alert
    from study_alerts.clock import Clock
    from study_alerts.scheduler.executor import AlertExecutor
    from study_alerts.scheduler.sweep import AlertSweeper, SweepReport

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "alert-sweep"
HINT_JOB_PREFIX = "hint:"


@dataclass(frozen=True)
class EngineStatus:
    running: bool
    interval_seconds: float
    hint_timers_enabled: bool
    armed_hints: int
    last_sweep_at: datetime | None
    last_report: SweepReport | None


class SchedulerEngine:
    """Runs the sweep on an interval and fires one-shot hint timers.

    Hints live only in APScheduler's in-memory job store. Losing them (on
    restart, or because one fires late) costs punctuality, never delivery:
    the next sweep picks up whatever is due.

    Args:
        sweeper: The reconciliation pass.
        executor: Shared with the sweeper; hints call it directly.
        clock: Time source for status reporting.
        interval_seconds: Sweep interval.
        min_interval_seconds: Lower bound for the interval.
        hint_timers_enabled: Arm a ``DateTrigger`` job per new alert.
        timezone: Scheduler timezone (IANA name).
    """

    def __init__(
        self,
        sweeper: AlertSweeper,
        executor: AlertExecutor,
        clock: Clock,
        interval_seconds: float = 30.0,
        min_interval_seconds: float = 10.0,
        hint_timers_enabled: bool = True,
        timezone: str = "UTC",
    ) -> None:
        self._sweeper = sweeper
        self._executor = executor
        self._clock = clock
        self._min_interval = min_interval_seconds
        self._interval = max(interval_seconds, min_interval_seconds)
        self._hints_enabled = hint_timers_enabled
        self._scheduler = AsyncIOScheduler(timezone=timezone)
        self._sweep_lock = asyncio.Lock()
        self._running = False
        self._last_sweep_at: datetime | None = None
        self._last_report: SweepReport | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_seconds(self) -> float:
        return self._interval

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler and run one sweep right away."""
        if self._running:
            return
        self._scheduler.add_job(
            self.trigger_sweep,
            trigger=IntervalTrigger(seconds=self._interval),
            id=SWEEP_JOB_ID,
            name="Alert sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started (sweep every %.0fs)", self._interval)
        await self.trigger_sweep()

    async def stop(self) -> None:
        """Shut down the scheduler. Armed hints are dropped."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    # -- Sweep -----------------------------------------------------------------

    async def trigger_sweep(self) -> SweepReport:
        """Run a sweep now. Concurrent calls are serialized."""
        async with self._sweep_lock:
            report = await self._sweeper.sweep()
            self._last_sweep_at = self._clock.now()
            self._last_report = report
        return report

    def update_interval(self, seconds: float) -> float:
        """Change the sweep interval, clamped to the minimum. Returns the applied value."""
        applied = max(float(seconds), self._min_interval)
        if applied != seconds:
            logger.warning(
                "Sweep interval %.1fs below minimum, using %.1fs", seconds, applied
            )
        self._interval = applied
        if self._running:
            self._scheduler.reschedule_job(SWEEP_JOB_ID, trigger=IntervalTrigger(seconds=applied))
        logger.info("Sweep interval set to %.1fs", applied)
        return applied

    # -- Hint timers -----------------------------------------------------------

    def arm_hint(self, alert: Alert) -> bool:
        """Schedule a one-shot delivery attempt at the alert's fire time.

        No-op while the engine is stopped; the first sweep after ``start``
        covers anything added in the meantime.
        """
        if not self._hints_enabled or not self._running:
            return False
        self._scheduler.add_job(
            self._run_hint,
            trigger=DateTrigger(run_date=alert.fire_at),
            id=f"{HINT_JOB_PREFIX}{alert.id}",
            name=f"Hint for {alert.title}",
            args=[alert.id],
            misfire_grace_time=None,
            replace_existing=True,
        )
        return True

    def disarm_hints(self, alert_ids: Iterable[str]) -> int:
        """Remove hint jobs; unknown or already-fired IDs are ignored."""
        removed = 0
        for alert_id in alert_ids:
            try:
                self._scheduler.remove_job(f"{HINT_JOB_PREFIX}{alert_id}")
                removed += 1
            except JobLookupError:
                logger.debug("No hint armed for alert %s", alert_id)
        return removed

    def armed_hints(self) -> list[str]:
        """Alert IDs with a hint job still waiting."""
        return [
            job.id.removeprefix(HINT_JOB_PREFIX)
            for job in self._scheduler.get_jobs()
            if job.id.startswith(HINT_JOB_PREFIX)
        ]

    async def _run_hint(self, alert_id: str) -> None:
        """Callback invoked by APScheduler. Delegates to the executor."""
        try:
            outcome = await self._executor.deliver(alert_id)
        except StudyAlertError:
            logger.exception("Hint delivery failed for alert %s; the sweep will retry", alert_id)
            return
        logger.debug("Hint for alert %s: %s", alert_id, outcome.value)

    # -- Status ----------------------------------------------------------------

    def status(self) -> EngineStatus:
        return EngineStatus(
            running=self._running,
            interval_seconds=self._interval,
            hint_timers_enabled=self._hints_enabled,
            armed_hints=len(self.armed_hints()),
            last_sweep_at=self._last_sweep_at,
            last_report=self._last_report,
        )
