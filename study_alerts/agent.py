"""Agent aggregate — a per-student read model over tasks, alerts and history.

Nothing here is persisted. Each status is derived from the stores on read
and cached briefly so a chatty dashboard does not rescan an owner's tasks on
every poll. The service invalidates an owner's entry on every mutation.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from study_alerts.alerts.models import AlertState
from study_alerts.tasks.models import TaskStatus

if TYPE_CHECKING:
    from datetime import datetime

    from study_alerts.alerts.store import AlertRepository
    from study_alerts.clock import Clock
    from study_alerts.notifications.history import NotificationHistory
    from study_alerts.tasks.models import Task
    from study_alerts.tasks.store import TaskRepository

logger = logging.getLogger(__name__)

TASK_OVERLOAD_THRESHOLD = 5
PENDING_ALERTS_THRESHOLD = 3
COMPLETION_RATE_TARGET = 70.0


@dataclass(frozen=True)
class Recommendation:
    kind: str
    priority: str
    title: str
    message: str
    action: str


@dataclass
class AgentStatus:
    """Snapshot of one student's workload and delivery health.

    Rates are percentages over tasks created in the trailing window and are
    ``None`` when the window holds nothing to measure.
    """

    owner_id: str
    generated_at: datetime
    window_days: int
    total_tasks: int = 0
    pending_tasks: int = 0
    completed_tasks: int = 0
    deleted_tasks: int = 0
    overdue_tasks: int = 0
    current_tasks: int = 0
    pending_alerts: int = 0
    failed_alerts: int = 0
    notifications_sent: int = 0
    completion_rate: float | None = None
    on_time_rate: float | None = None
    average_completion_minutes: float | None = None
    by_category: dict[str, int] = field(default_factory=dict)
    recommendations: list[Recommendation] = field(default_factory=list)


def _percent(part: int, whole: int) -> float | None:
    if whole == 0:
        return None
    return round(100.0 * part / whole, 1)


def build_recommendations(status: AgentStatus) -> list[Recommendation]:
    """Suggestions derived from a status snapshot."""
    recommendations = []
    if status.current_tasks > TASK_OVERLOAD_THRESHOLD:
        recommendations.append(
            Recommendation(
                kind="task_management",
                priority="high",
                title="Task overload",
                message=(
                    f"You have {status.current_tasks} upcoming tasks. "
                    "Consider prioritizing or rescheduling some of them."
                ),
                action="review_tasks",
            )
        )
    if status.overdue_tasks:
        recommendations.append(
            Recommendation(
                kind="overdue",
                priority="high",
                title="Overdue tasks",
                message=(
                    f"{status.overdue_tasks} task(s) have passed their start time "
                    "without being completed."
                ),
                action="review_overdue",
            )
        )
    if status.pending_alerts > PENDING_ALERTS_THRESHOLD:
        recommendations.append(
            Recommendation(
                kind="alert_management",
                priority="high",
                title="Multiple pending alerts",
                message="You have several upcoming alerts. Review them so nothing surprises you.",
                action="review_alerts",
            )
        )
    if status.failed_alerts:
        recommendations.append(
            Recommendation(
                kind="delivery",
                priority="medium",
                title="Alerts not delivered",
                message=(
                    f"{status.failed_alerts} alert(s) could not be delivered. "
                    "Check your notification channels."
                ),
                action="check_channels",
            )
        )
    if status.completion_rate is not None and status.completion_rate < COMPLETION_RATE_TARGET:
        recommendations.append(
            Recommendation(
                kind="performance",
                priority="medium",
                title="Task completion rate low",
                message=(
                    f"Your task completion rate is {status.completion_rate:.0f}%, "
                    f"below {COMPLETION_RATE_TARGET:.0f}%. Focus on completing tasks on time."
                ),
                action="improve_task_completion",
            )
        )
    return recommendations


class AgentAggregate:
    """Builds and caches ``AgentStatus`` per owner.

    Args:
        tasks: Task store.
        alerts: Alert store.
        history: Notification history.
        clock: Time source; also drives cache expiry.
        ttl_seconds: Cache lifetime. Zero disables caching.
        window_days: Default trailing window for the rates.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        alerts: AlertRepository,
        history: NotificationHistory,
        clock: Clock,
        ttl_seconds: float = 5.0,
        window_days: int = 30,
    ) -> None:
        self._tasks = tasks
        self._alerts = alerts
        self._history = history
        self._clock = clock
        self._ttl = timedelta(seconds=ttl_seconds)
        self._window_days = window_days
        self._cache: dict[str, tuple[datetime, AgentStatus]] = {}

    def invalidate(self, owner_id: str) -> None:
        self._cache.pop(owner_id, None)

    async def get_status(self, owner_id: str, window_days: int | None = None) -> AgentStatus:
        now = self._clock.now()
        use_cache = window_days is None or window_days == self._window_days
        if use_cache and self._ttl > timedelta(0):
            cached = self._cache.get(owner_id)
            if cached is not None and cached[0] > now:
                return cached[1]

        status = await self._build(owner_id, now, window_days or self._window_days)
        if use_cache and self._ttl > timedelta(0):
            self._cache[owner_id] = (now + self._ttl, status)
        return status

    async def recommendations(self, owner_id: str) -> list[Recommendation]:
        status = await self.get_status(owner_id)
        return status.recommendations

    async def _build(self, owner_id: str, now: datetime, window_days: int) -> AgentStatus:
        tasks = await self._tasks.list_tasks(owner_id)
        alert_counts = await self._alerts.count_by_state(owner_id)
        sent = await self._history.count(owner_id, ok=True)

        statuses = Counter(t.status for t in tasks)
        live = [t for t in tasks if t.status != TaskStatus.DELETED]
        overdue = sum(1 for t in live if t.is_overdue(now))
        status = AgentStatus(
            owner_id=owner_id,
            generated_at=now,
            window_days=window_days,
            total_tasks=len(live),
            pending_tasks=statuses[TaskStatus.PENDING],
            completed_tasks=statuses[TaskStatus.COMPLETED],
            deleted_tasks=statuses[TaskStatus.DELETED],
            overdue_tasks=overdue,
            current_tasks=statuses[TaskStatus.PENDING] - overdue,
            pending_alerts=alert_counts[AlertState.PENDING],
            failed_alerts=alert_counts[AlertState.FAILED],
            notifications_sent=sent,
            by_category=dict(Counter(t.category for t in live)),
        )
        self._apply_performance(status, live, now - timedelta(days=window_days))
        status.recommendations = build_recommendations(status)
        return status

    @staticmethod
    def _apply_performance(status: AgentStatus, tasks: list[Task], since: datetime) -> None:
        recent = [t for t in tasks if t.created_at is None or t.created_at >= since]
        completed = [t for t in recent if t.status == TaskStatus.COMPLETED]
        pending = [t for t in recent if t.status == TaskStatus.PENDING]

        status.completion_rate = _percent(len(completed), len(completed) + len(pending))
        on_time = sum(1 for t in completed if t.completed_on_time())
        status.on_time_rate = _percent(on_time, len(completed))

        durations = [
            (t.completed_at - t.created_at).total_seconds() / 60
            for t in completed
            if t.completed_at is not None and t.created_at is not None
        ]
        if durations:
            status.average_completion_minutes = round(sum(durations) / len(durations), 1)
