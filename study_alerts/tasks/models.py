"""Task data model, input validation and alert offset parsing."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from study_alerts.clock import ensure_utc, format_instant, parse_instant


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def at_least(self, other: Priority) -> Priority:
        """Return whichever of the two priorities is higher."""
        return self if self.rank >= other.rank else other


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DELETED = "deleted"


TASK_CATEGORIES = ("academic", "clinical", "emergency", "personal", "career")


# -- Offsets -------------------------------------------------------------------

_UNITS = r"hours|hour|hrs|hr|h|minutes|minute|mins|min|m|seconds|second|secs|sec|s"
_OFFSET_PART = re.compile(rf"(\d+)\s*({_UNITS})")
_OFFSET_FULL = re.compile(rf"(?:\d+\s*(?:{_UNITS})\s*)+")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


def parse_offset(value: str | int | float | timedelta) -> timedelta:
    """Parse one alert offset.

    Accepts a ``timedelta``, a number of minutes, ``"exact"`` (zero), or a
    compact duration such as ``"30min"``, ``"15m"``, ``"1h"``, ``"1h30m"``,
    ``"90s"``. The result is rounded to whole seconds. Raises ``ValueError``
    for anything else or a negative value.
    """
    if isinstance(value, timedelta):
        offset = value
    elif isinstance(value, bool):
        msg = f"Invalid alert offset: {value!r}"
        raise ValueError(msg)
    elif isinstance(value, int | float):
        offset = timedelta(minutes=value)
    elif isinstance(value, str):
        text = value.strip().lower()
        if text in ("exact", "0"):
            return timedelta(0)
        if text.isdigit():
            return timedelta(minutes=int(text))
        if not _OFFSET_FULL.fullmatch(text):
            msg = f"Invalid alert offset: {value!r}"
            raise ValueError(msg)
        seconds = sum(
            int(m.group(1)) * _UNIT_SECONDS[m.group(2)[0]] for m in _OFFSET_PART.finditer(text)
        )
        offset = timedelta(seconds=seconds)
    else:
        msg = f"Invalid alert offset: {value!r}"
        raise ValueError(msg)

    if offset < timedelta(0):
        msg = f"Alert offset must not be negative: {value!r}"
        raise ValueError(msg)
    # Alerts are keyed on whole seconds.
    return timedelta(seconds=round(offset.total_seconds()))


def normalize_offsets(values: list[Any]) -> list[timedelta]:
    """Parse, deduplicate and order offsets largest first (earliest alert first)."""
    parsed = {parse_offset(v) for v in values}
    return sorted(parsed, reverse=True)


def format_offset(offset: timedelta) -> str:
    """Render an offset the way users type them (``"30min"``, ``"1h30min"``, ``"exact"``)."""
    seconds = int(offset.total_seconds())
    if seconds == 0:
        return "exact"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}min")
    if secs:
        parts.append(f"{secs}s")
    return "".join(parts)


# -- Task ----------------------------------------------------------------------


@dataclass
class Task:
    """A scheduled student activity with its reminder configuration.

    Attributes:
        id: Unique identifier (UUID hex).
        owner_id: The student the task belongs to.
        scheduled_time: When the activity starts (UTC).
        deadline: Optional hard end, never before ``scheduled_time``.
        alert_offsets: How long before ``scheduled_time`` each alert fires,
            largest first.
        channels: Channel names alerts for this task are sent on.
        revision: Bumped each time the task's alerts are regenerated.
    """

    id: str
    owner_id: str
    title: str
    scheduled_time: datetime
    description: str = ""
    category: str = "personal"
    subcategory: str = "General"
    location: str = ""
    notes: str = ""
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    deadline: datetime | None = None
    duration_minutes: int = 60
    alert_offsets: list[timedelta] = field(default_factory=list)
    auto_alerts: bool = True
    channels: list[str] = field(default_factory=list)
    revision: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def end_time(self) -> datetime:
        return self.scheduled_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_terminal(self) -> bool:
        return self.status != TaskStatus.PENDING

    def is_overdue(self, now: datetime) -> bool:
        return self.status == TaskStatus.PENDING and self.scheduled_time < now

    def completed_on_time(self) -> bool | None:
        """Whether the task was completed by its deadline (or scheduled end)."""
        if self.completed_at is None:
            return None
        return self.completed_at <= (self.deadline or self.end_time)

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.owner_id,
            self.title,
            self.description,
            self.category,
            self.subcategory,
            self.location,
            self.notes,
            self.priority.value,
            self.status.value,
            format_instant(self.scheduled_time),
            format_instant(self.deadline),
            self.duration_minutes,
            json.dumps([int(o.total_seconds()) for o in self.alert_offsets]),
            int(self.auto_alerts),
            json.dumps(self.channels),
            self.revision,
            format_instant(self.created_at),
            format_instant(self.updated_at),
            format_instant(self.completed_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            owner_id=row[1],
            title=row[2],
            description=row[3] or "",
            category=row[4],
            subcategory=row[5],
            location=row[6] or "",
            notes=row[7] or "",
            priority=Priority(row[8]),
            status=TaskStatus(row[9]),
            scheduled_time=parse_instant(row[10]),
            deadline=parse_instant(row[11]),
            duration_minutes=row[12],
            alert_offsets=[timedelta(seconds=s) for s in json.loads(row[13])],
            auto_alerts=bool(row[14]),
            channels=json.loads(row[15]),
            revision=row[16],
            created_at=parse_instant(row[17]),
            updated_at=parse_instant(row[18]),
            completed_at=parse_instant(row[19]),
        )


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex


# -- Inputs --------------------------------------------------------------------


class TaskInput(BaseModel):
    """What a front-end supplies to create a task."""

    title: str = Field(description="Short name of the activity")
    scheduled_time: datetime = Field(description="When the activity starts")
    description: str = ""
    category: str = "personal"
    subcategory: str = "General"
    location: str = ""
    notes: str = ""
    priority: Priority = Priority.MEDIUM
    deadline: datetime | None = None
    duration_minutes: int = Field(default=60, gt=0)
    alert_offsets: list[str | int | float | timedelta] | None = Field(
        default=None,
        description="Offsets before scheduled_time; None uses the configured defaults",
    )
    auto_alerts: bool = True
    channels: list[str] | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "title must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("scheduled_time", "deadline")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @field_validator("alert_offsets")
    @classmethod
    def _valid_offsets(cls, value: list | None) -> list | None:
        if value is None:
            return None
        return normalize_offsets(value)

    @model_validator(mode="after")
    def _deadline_after_start(self) -> TaskInput:
        if self.deadline is not None and self.deadline < self.scheduled_time:
            msg = "deadline must not be before scheduled_time"
            raise ValueError(msg)
        return self


class TaskPatch(BaseModel):
    """Partial update for a pending task. Only explicitly set fields apply."""

    title: str | None = None
    description: str | None = None
    category: str | None = None
    subcategory: str | None = None
    location: str | None = None
    notes: str | None = None
    priority: Priority | None = None
    scheduled_time: datetime | None = None
    deadline: datetime | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    alert_offsets: list[str | int | float | timedelta] | None = None
    auto_alerts: bool | None = None
    channels: list[str] | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            msg = "title must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("scheduled_time", "deadline")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @field_validator("alert_offsets")
    @classmethod
    def _valid_offsets(cls, value: list | None) -> list | None:
        if value is None:
            return None
        return normalize_offsets(value)

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> TaskPatch:
        for name in ("title", "scheduled_time", "priority", "duration_minutes", "auto_alerts"):
            if name in self.model_fields_set and getattr(self, name) is None:
                msg = f"{name} cannot be cleared"
                raise ValueError(msg)
        return self

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually set."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# Fields whose change invalidates the task's alerts.
RESCHEDULING_FIELDS = frozenset({"scheduled_time", "alert_offsets", "auto_alerts", "channels"})


@dataclass
class TaskFilters:
    """Filters for ``list_tasks``. ``None`` means "any"."""

    status: TaskStatus | None = None
    category: str | None = None
    priority: Priority | None = None
    date: date | None = None


@dataclass
class TaskList:
    """Ordered tasks plus aggregate counts."""

    tasks: list[Task]
    total: int = 0
    pending: int = 0
    completed: int = 0
    overdue: int = 0
