"""StudyAlertService — the external interface of the scheduling engine.

Front-ends (chat bots, a dashboard API) call only this class. It owns the
per-owner locks that make task creation and its alert planning look atomic,
and it wires the stores, the dispatcher and the scheduler together.
"""

from __future__ import annotations

import asyncio
import logging
import zoneinfo
from collections import defaultdict
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from study_alerts.agent import AgentAggregate
from study_alerts.alerts.models import Alert, AlertKind, make_alert_id
from study_alerts.alerts.planner import PlanningPolicy, plan_alerts
from study_alerts.alerts.store import InMemoryAlertStore, SQLiteAlertStore
from study_alerts.clock import SystemClock
from study_alerts.config import Settings
from study_alerts.errors import ConflictError, NotFoundError, ValidationError
from study_alerts.notifications.dispatcher import Dispatcher
from study_alerts.notifications.formatting import READ_ACTION, parse_action_callback
from study_alerts.notifications.history import (
    InMemoryNotificationHistory,
    SQLiteNotificationHistory,
)
from study_alerts.notifications.router import NotificationRouter
from study_alerts.owners import InMemoryOwnerDirectory, OwnerProfile, SQLiteOwnerDirectory
from study_alerts.scheduler.engine import SchedulerEngine
from study_alerts.scheduler.executor import AlertExecutor
from study_alerts.scheduler.recent import RecentlyProcessed
from study_alerts.scheduler.sweep import AlertSweeper
from study_alerts.tasks.models import (
    RESCHEDULING_FIELDS,
    Priority,
    Task,
    TaskFilters,
    TaskInput,
    TaskList,
    TaskPatch,
    TaskStatus,
    make_task_id,
    normalize_offsets,
)
from study_alerts.tasks.store import InMemoryTaskStore, SQLiteTaskStore

if TYPE_CHECKING:
    from study_alerts.agent import AgentStatus, Recommendation
    from study_alerts.alerts.store import AlertRepository
    from study_alerts.clock import Clock
    from study_alerts.notifications.history import NotificationHistory
    from study_alerts.owners import OwnerDirectory
    from study_alerts.scheduler.engine import EngineStatus
    from study_alerts.scheduler.sweep import SweepReport
    from study_alerts.tasks.store import TaskRepository

logger = logging.getLogger(__name__)


def _validate(model: type[BaseModel], data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(reasons) from exc


class StudyAlertService:
    """Task and alert operations for every student.

    Args:
        tasks: Task store.
        alerts: Alert store.
        owners: Owner profiles (recipient addresses).
        history: Notification history.
        router: Registered notification channels.
        clock: Time source for every decision.
        settings: Engine configuration.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        alerts: AlertRepository,
        owners: OwnerDirectory,
        history: NotificationHistory,
        router: NotificationRouter,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._tasks = tasks
        self._alerts = alerts
        self._owners = owners
        self._history = history
        self._router = router
        self._clock = clock
        self._settings = settings
        self._policy = PlanningPolicy.from_settings(settings)
        self._default_offsets = normalize_offsets(settings.get_default_alert_offsets())
        self._timezone = zoneinfo.ZoneInfo(settings.timezone)
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        dispatcher = Dispatcher(router, history, clock, settings.notifier_timeout_seconds)
        self._executor = AlertExecutor(
            alerts,
            owners,
            dispatcher,
            clock,
            max_retries=settings.max_retries,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            recent=RecentlyProcessed(settings.recent_ids_capacity),
        )
        sweeper = AlertSweeper(alerts, self._executor, clock, settings.claim_lease_seconds)
        self._engine = SchedulerEngine(
            sweeper,
            self._executor,
            clock,
            interval_seconds=settings.effective_check_interval,
            min_interval_seconds=settings.min_check_interval_seconds,
            hint_timers_enabled=settings.hint_timers_enabled,
            timezone=settings.timezone,
        )
        self._agent = AgentAggregate(
            tasks,
            alerts,
            history,
            clock,
            ttl_seconds=settings.agent_status_ttl_seconds,
            window_days=settings.performance_window_days,
        )

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        router: NotificationRouter | None = None,
        clock: Clock | None = None,
    ) -> StudyAlertService:
        """Build a service on the configured storage backend."""
        settings = settings or Settings()
        router = router or NotificationRouter()
        clock = clock or SystemClock()
        backend = settings.storage_backend.lower()
        if backend == "sqlite":
            path = settings.database_path
            return cls(
                SQLiteTaskStore(path),
                SQLiteAlertStore(path),
                SQLiteOwnerDirectory(path),
                SQLiteNotificationHistory(path),
                router,
                clock,
                settings,
            )
        if backend == "memory":
            return cls(
                InMemoryTaskStore(),
                InMemoryAlertStore(),
                InMemoryOwnerDirectory(),
                InMemoryNotificationHistory(),
                router,
                clock,
                settings,
            )
        msg = f"Unknown storage backend: {settings.storage_backend!r}"
        raise ValueError(msg)

    @property
    def router(self) -> NotificationRouter:
        return self._router

    @property
    def engine(self) -> SchedulerEngine:
        return self._engine

    @property
    def executor(self) -> AlertExecutor:
        return self._executor

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        await self._engine.start()

    async def stop(self) -> None:
        await self._engine.stop()

    # -- Tasks -----------------------------------------------------------------

    async def add_task(self, owner_id: str, data: TaskInput | dict[str, Any]) -> Task:
        """Create a task and plan its alerts before returning.

        Raises:
            ValidationError: Missing title or scheduled time, bad offsets,
                or a deadline before the scheduled time.
        """
        if not owner_id:
            msg = "owner_id must not be empty"
            raise ValidationError(msg)
        payload: TaskInput = _validate(TaskInput, data)
        now = self._clock.now()

        async with self._locks[owner_id]:
            task = Task(
                id=make_task_id(),
                owner_id=owner_id,
                title=payload.title,
                scheduled_time=payload.scheduled_time,
                description=payload.description,
                category=payload.category,
                subcategory=payload.subcategory,
                location=payload.location,
                notes=payload.notes,
                priority=payload.priority,
                deadline=payload.deadline,
                duration_minutes=payload.duration_minutes,
                alert_offsets=(
                    payload.alert_offsets
                    if payload.alert_offsets is not None
                    else list(self._default_offsets)
                ),
                auto_alerts=payload.auto_alerts,
                channels=self._channels_or_default(payload.channels),
                created_at=now,
                updated_at=now,
            )
            alerts = plan_alerts(task, now, self._policy)
            await self._tasks.add_task(task)
            try:
                await self._alerts.insert(alerts)
            except Exception:
                await self._tasks.remove_task(owner_id, task.id)
                raise

        self._arm(alerts)
        self._agent.invalidate(owner_id)
        logger.info(
            "Task %s '%s' for %s at %s with %d alert(s)",
            task.id,
            task.title,
            owner_id,
            task.scheduled_time.isoformat(),
            len(alerts),
        )
        return task

    async def update_task(
        self, owner_id: str, task_id: str, patch: TaskPatch | dict[str, Any]
    ) -> Task:
        """Apply a partial update. Rescheduling regenerates the task's alerts.

        Pending alerts are cancelled and replaced under a new revision;
        sent and read alerts stay as history.
        """
        patch = _validate(TaskPatch, patch)
        changes = patch.changes()
        now = self._clock.now()
        cancelled: list[str] = []
        alerts: list[Alert] = []

        async with self._locks[owner_id]:
            task = await self._require_task(owner_id, task_id)
            if task.is_terminal:
                msg = f"Task {task_id} is {task.status.value} and cannot be changed"
                raise ConflictError(msg)

            before = {name: getattr(task, name) for name in RESCHEDULING_FIELDS}
            for name, value in changes.items():
                setattr(task, name, value)
            if "alert_offsets" in changes and task.alert_offsets is None:
                task.alert_offsets = list(self._default_offsets)
            if "channels" in changes:
                task.channels = self._channels_or_default(task.channels)
            if task.deadline is not None and task.deadline < task.scheduled_time:
                msg = "deadline must not be before scheduled_time"
                raise ValidationError(msg)
            task.updated_at = now

            # Regenerate only when a rescheduling field actually changed.
            if any(getattr(task, name) != old for name, old in before.items()):
                cancelled = await self._alerts.cancel_for_task(task.id, now)
                task.revision += 1
                alerts = plan_alerts(task, now, self._policy)
            await self._tasks.save_task(task)
            await self._alerts.insert(alerts)

        self._engine.disarm_hints(cancelled)
        self._arm(alerts)
        self._agent.invalidate(owner_id)
        if alerts or cancelled:
            logger.info(
                "Task %s rescheduled (rev %d): %d alert(s) cancelled, %d planned",
                task.id,
                task.revision,
                len(cancelled),
                len(alerts),
            )
        return task

    async def complete_task(self, owner_id: str, task_id: str) -> Task:
        return await self._finish(owner_id, task_id, TaskStatus.COMPLETED)

    async def delete_task(self, owner_id: str, task_id: str) -> Task:
        return await self._finish(owner_id, task_id, TaskStatus.DELETED)

    async def get_task(self, owner_id: str, task_id: str) -> Task:
        return await self._require_task(owner_id, task_id)

    async def list_tasks(self, owner_id: str, filters: TaskFilters | None = None) -> TaskList:
        """Tasks ordered by scheduled time, plus pending/completed/overdue counts.

        Deleted tasks are left out unless ``filters.status`` asks for them.
        The date filter matches the calendar day in the configured timezone.
        """
        filters = filters or TaskFilters()
        tasks = await self._tasks.list_tasks(
            owner_id,
            status=filters.status,
            category=filters.category,
            priority=filters.priority,
        )
        if filters.status is None:
            tasks = [t for t in tasks if t.status != TaskStatus.DELETED]
        if filters.date is not None:
            tasks = [
                t
                for t in tasks
                if t.scheduled_time.astimezone(self._timezone).date() == filters.date
            ]

        now = self._clock.now()
        return TaskList(
            tasks=tasks,
            total=len(tasks),
            pending=sum(1 for t in tasks if t.status == TaskStatus.PENDING),
            completed=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
            overdue=sum(1 for t in tasks if t.is_overdue(now)),
        )

    # -- Alerts ----------------------------------------------------------------

    async def get_pending_alerts(self, owner_id: str) -> list[Alert]:
        """Alerts still to be delivered, plus failed ones so failures stay visible."""
        pending = await self._alerts.pending_alerts(owner_id)
        failed = await self._alerts.failed_alerts(owner_id)
        return sorted(pending + failed, key=lambda a: a.fire_at)

    async def mark_alert_read(self, owner_id: str, alert_id: str) -> bool:
        """Acknowledge an alert. Returns False if it was already read or is no longer live.

        Reading a pending alert also suppresses its delivery.
        """
        alert = await self._alerts.get_alert(alert_id)
        if alert is None or alert.owner_id != owner_id:
            msg = f"Alert {alert_id} not found"
            raise NotFoundError(msg)
        ok = await self._alerts.mark_read(alert_id, self._clock.now())
        if ok:
            self._engine.disarm_hints([alert_id])
            self._agent.invalidate(owner_id)
        return ok

    async def handle_action(self, owner_id: str, callback_data: str) -> bool:
        """Apply an alert button press (``alr:<alert_id>:<action>``)."""
        parsed = parse_action_callback(callback_data)
        if parsed is None:
            msg = f"Not an alert action: {callback_data!r}"
            raise ValidationError(msg)
        alert_id, action = parsed
        if action != READ_ACTION:
            msg = f"Unknown alert action: {action!r}"
            raise ValidationError(msg)
        return await self.mark_alert_read(owner_id, alert_id)

    async def raise_emergency(
        self, owner_id: str, message: str, *, title: str = "Emergency alert"
    ) -> Alert:
        """Queue an immediate critical alert on the emergency channels.

        Delivery goes through the usual claim path (hint timer or the next
        sweep), never inline.
        """
        if not owner_id:
            msg = "owner_id must not be empty"
            raise ValidationError(msg)
        if not message or not message.strip():
            msg = "emergency message must not be empty"
            raise ValidationError(msg)
        now = self._clock.now()
        alert_id = make_alert_id()
        alert = Alert(
            id=alert_id,
            task_id=f"emergency:{alert_id}",
            owner_id=owner_id,
            offset=timedelta(0),
            fire_at=now,
            kind=AlertKind.EMERGENCY,
            priority=Priority.CRITICAL,
            title=title.strip() or "Emergency alert",
            message=message.strip(),
            channels=self._settings.get_emergency_channels(),
            created_at=now,
        )
        await self._alerts.insert([alert])
        self._arm([alert])
        self._agent.invalidate(owner_id)
        logger.warning("Emergency alert %s raised for %s", alert.id, owner_id)
        return alert

    # -- Owners ----------------------------------------------------------------

    async def register_owner(self, profile: OwnerProfile) -> OwnerProfile:
        if not profile.owner_id:
            msg = "owner_id must not be empty"
            raise ValidationError(msg)
        await self._owners.save(profile)
        return profile

    async def get_owner(self, owner_id: str) -> OwnerProfile:
        """The registered profile, or a bare one addressed by the owner ID."""
        return await self._owners.get(owner_id) or OwnerProfile(owner_id=owner_id)

    # -- Read model ------------------------------------------------------------

    async def get_agent_status(
        self, owner_id: str, window_days: int | None = None
    ) -> AgentStatus:
        return await self._agent.get_status(owner_id, window_days)

    async def get_recommendations(self, owner_id: str) -> list[Recommendation]:
        return await self._agent.recommendations(owner_id)

    async def get_notification_history(self, owner_id: str, limit: int | None = 50):
        return await self._history.list_for_owner(owner_id, limit)

    # -- Scheduler control -----------------------------------------------------

    async def trigger_sweep(self) -> SweepReport:
        return await self._engine.trigger_sweep()

    def update_check_interval(self, seconds: float) -> float:
        return self._engine.update_interval(seconds)

    def scheduler_status(self) -> EngineStatus:
        return self._engine.status()

    # -- Internal --------------------------------------------------------------

    async def _require_task(self, owner_id: str, task_id: str) -> Task:
        task = await self._tasks.get_task(owner_id, task_id)
        if task is None:
            msg = f"Task {task_id} not found"
            raise NotFoundError(msg)
        return task

    async def _finish(self, owner_id: str, task_id: str, status: TaskStatus) -> Task:
        now = self._clock.now()
        async with self._locks[owner_id]:
            task = await self._require_task(owner_id, task_id)
            if task.is_terminal:
                msg = f"Task {task_id} is already {task.status.value}"
                raise ConflictError(msg)
            task.status = status
            task.updated_at = now
            if status == TaskStatus.COMPLETED:
                task.completed_at = now
            await self._tasks.save_task(task)
            cancelled = await self._alerts.cancel_for_task(task.id, now)

        self._engine.disarm_hints(cancelled)
        self._agent.invalidate(owner_id)
        logger.info(
            "Task %s %s; %d alert(s) cancelled", task.id, status.value, len(cancelled)
        )
        return task

    def _channels_or_default(self, channels: list[str] | None) -> list[str]:
        if channels:
            return list(dict.fromkeys(channels))
        return list(self._policy.default_channels)

    def _arm(self, alerts: list[Alert]) -> None:
        for alert in alerts:
            self._engine.arm_hint(alert)
