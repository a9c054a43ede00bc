"""Alert planner — turns a task's offsets into alert drafts.

Pure: no I/O, no clock reads. Everything time-dependent comes in through
``now`` so the offset → kind/priority/channel mapping is easy to test.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from study_alerts.alerts.models import Alert, AlertKind, make_alert_id
from study_alerts.tasks.models import Priority, Task, format_offset

if TYPE_CHECKING:
    from study_alerts.config import Settings

ADVANCE_THRESHOLD = timedelta(minutes=60)


@dataclass(frozen=True)
class PlanningPolicy:
    """Knobs for the offset → alert mapping.

    Attributes:
        urgent_threshold: Offsets at or below this are ``urgent``.
        include_exact: Add an implicit zero offset to every task.
        default_channels: Used when the task names no channels.
        urgent_channels: Added to urgent alerts and to all alerts of
            critical tasks.
    """

    urgent_threshold: timedelta = timedelta(minutes=5)
    include_exact: bool = False
    default_channels: tuple[str, ...] = ("dashboard",)
    urgent_channels: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: Settings) -> PlanningPolicy:
        return cls(
            urgent_threshold=timedelta(minutes=settings.urgent_threshold_minutes),
            include_exact=settings.include_exact_alert,
            default_channels=tuple(settings.get_default_channels()),
            urgent_channels=tuple(settings.get_urgent_channels()),
        )


def classify_offset(offset: timedelta, policy: PlanningPolicy) -> AlertKind:
    """Map an offset's magnitude to an alert kind."""
    if offset <= policy.urgent_threshold:
        return AlertKind.URGENT
    if offset > ADVANCE_THRESHOLD:
        return AlertKind.ADVANCE
    return AlertKind.REMINDER


def merge_channels(*groups: list[str] | tuple[str, ...]) -> list[str]:
    """Concatenate channel lists, keeping first-seen order and dropping repeats."""
    seen: dict[str, None] = {}
    for group in groups:
        for name in group:
            seen.setdefault(name, None)
    return list(seen)


def alert_message(task: Task, offset: timedelta) -> str:
    """Human-readable reminder body for one offset."""
    if offset == timedelta(0):
        text = f"{task.title} is starting now"
    else:
        text = f"{task.title} starts in {format_offset(offset)}"
    if task.location:
        text += f" at {task.location}"
    return text


def plan_alerts(task: Task, now: datetime, policy: PlanningPolicy | None = None) -> list[Alert]:
    """Compute the alerts a task should have, as of *now*.

    One draft per offset with ``fire_at = scheduled_time - offset``. Offsets
    whose fire time is not strictly in the future are dropped, so a task
    created close to its start simply gets fewer alerts. Returns drafts
    sorted by ``fire_at`` ascending; empty when ``auto_alerts`` is off.
    """
    policy = policy or PlanningPolicy()
    if not task.auto_alerts or task.is_terminal:
        return []

    offsets = set(task.alert_offsets)
    if policy.include_exact:
        offsets.add(timedelta(0))

    base_channels = task.channels or list(policy.default_channels)
    alerts: list[Alert] = []
    for offset in offsets:
        fire_at = task.scheduled_time - offset
        if fire_at <= now:
            continue

        kind = classify_offset(offset, policy)
        priority = task.priority
        channels = base_channels
        if kind == AlertKind.URGENT:
            priority = priority.at_least(Priority.HIGH)
        if kind == AlertKind.URGENT or task.priority == Priority.CRITICAL:
            channels = merge_channels(base_channels, policy.urgent_channels)

        alerts.append(
            Alert(
                id=make_alert_id(),
                task_id=task.id,
                owner_id=task.owner_id,
                offset=offset,
                fire_at=fire_at,
                kind=kind,
                priority=priority,
                title=task.title,
                message=alert_message(task, offset),
                channels=list(channels),
                task_revision=task.revision,
                created_at=now,
            )
        )

    alerts.sort(key=lambda a: a.fire_at)
    return alerts
