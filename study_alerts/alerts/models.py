"""Alert data model and lifecycle states."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from study_alerts.clock import format_instant, parse_instant
from study_alerts.tasks.models import Priority


class AlertState(str, Enum):
    """Alert lifecycle.

    ``pending`` → ``dispatching`` (claimed by one trigger) → ``sent`` | ``failed``.
    ``pending`` → ``cancelled`` when the task ends first, ``pending``/``sent`` →
    ``read`` on acknowledgement. ``failed`` goes back to ``dispatching`` only
    through the retry pass while attempts remain.
    """

    PENDING = "pending"
    DISPATCHING = "dispatching"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    READ = "read"


class AlertKind(str, Enum):
    ADVANCE = "advance"
    REMINDER = "reminder"
    URGENT = "urgent"
    EMERGENCY = "emergency"


@dataclass
class Alert:
    """One scheduled reminder derived from a task and a single offset.

    Attributes:
        offset: Distance before the task's scheduled time; zero for "exact".
        task_revision: Task revision the alert was planned for. Together with
            ``task_id`` and ``offset`` it identifies the alert uniquely.
        attempts: Failed delivery attempts so far.
        next_attempt_at: Earliest time the retry pass may pick a failed alert.
    """

    id: str
    task_id: str
    owner_id: str
    offset: timedelta
    fire_at: datetime
    kind: AlertKind = AlertKind.REMINDER
    priority: Priority = Priority.MEDIUM
    title: str = ""
    message: str = ""
    channels: list[str] = field(default_factory=list)
    state: AlertState = AlertState.PENDING
    task_revision: int = 0
    attempts: int = 0
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    created_at: datetime | None = None
    claimed_at: datetime | None = None
    sent_at: datetime | None = None
    read_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (AlertState.SENT, AlertState.CANCELLED, AlertState.READ)

    def is_due(self, now: datetime) -> bool:
        return self.state == AlertState.PENDING and self.fire_at <= now

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``alerts`` column order."""
        return (
            self.id,
            self.task_id,
            self.owner_id,
            int(self.offset.total_seconds()),
            format_instant(self.fire_at),
            self.kind.value,
            self.priority.value,
            self.title,
            self.message,
            json.dumps(self.channels),
            self.state.value,
            self.task_revision,
            self.attempts,
            self.last_error,
            format_instant(self.next_attempt_at),
            format_instant(self.created_at),
            format_instant(self.claimed_at),
            format_instant(self.sent_at),
            format_instant(self.read_at),
            format_instant(self.cancelled_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Alert:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            task_id=row[1],
            owner_id=row[2],
            offset=timedelta(seconds=row[3]),
            fire_at=parse_instant(row[4]),
            kind=AlertKind(row[5]),
            priority=Priority(row[6]),
            title=row[7] or "",
            message=row[8] or "",
            channels=json.loads(row[9]),
            state=AlertState(row[10]),
            task_revision=row[11],
            attempts=row[12],
            last_error=row[13],
            next_attempt_at=parse_instant(row[14]),
            created_at=parse_instant(row[15]),
            claimed_at=parse_instant(row[16]),
            sent_at=parse_instant(row[17]),
            read_at=parse_instant(row[18]),
            cancelled_at=parse_instant(row[19]),
        )


def make_alert_id() -> str:
    """Generate a new alert ID."""
    return uuid.uuid4().hex
