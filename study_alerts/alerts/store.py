"""Alert persistence with compare-and-swap state transitions.

Every transition is a single conditional update: it succeeds only when the
alert is currently in one of the expected states. A losing caller gets
``False`` back, which means "someone else already handled it", never an
error. This is what keeps the sweep and the hint timers from delivering the
same alert twice.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Protocol

from study_alerts.alerts.models import Alert, AlertState
from study_alerts.clock import format_instant
from study_alerts.db import SQLiteDatabase
from study_alerts.errors import ConflictError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, task_id, owner_id, offset_seconds, fire_at, kind, priority, title, message, "
    "channels, state, task_revision, attempts, last_error, next_attempt_at, "
    "created_at, claimed_at, sent_at, read_at, cancelled_at"
)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    offset_seconds INTEGER NOT NULL,
    fire_at TEXT NOT NULL,
    kind TEXT NOT NULL,
    priority TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    message TEXT NOT NULL DEFAULT '',
    channels TEXT NOT NULL DEFAULT '[]',
    state TEXT NOT NULL DEFAULT 'pending',
    task_revision INTEGER NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    next_attempt_at TEXT,
    created_at TEXT NOT NULL,
    claimed_at TEXT,
    sent_at TEXT,
    read_at TEXT,
    cancelled_at TEXT,
    UNIQUE (task_id, offset_seconds, task_revision)
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_alerts_owner_state ON alerts (owner_id, state, fire_at)
"""

_CLAIMABLE = (AlertState.PENDING,)
_SENDABLE = (AlertState.PENDING, AlertState.DISPATCHING)
_READABLE = (AlertState.PENDING, AlertState.SENT)
_CANCELLABLE = (AlertState.PENDING, AlertState.FAILED)


class AlertRepository(Protocol):
    """Storage contract for alerts. All ``mark_*``/``claim*`` methods are CAS."""

    async def insert(self, alerts: Iterable[Alert]) -> None: ...

    async def get_alert(self, alert_id: str) -> Alert | None: ...

    async def claim(self, alert_id: str, now: datetime) -> bool: ...

    async def claim_retry(self, alert_id: str, now: datetime, max_retries: int) -> bool: ...

    async def mark_sent(self, alert_id: str, now: datetime) -> bool: ...

    async def mark_failed(
        self,
        alert_id: str,
        reason: str,
        now: datetime,
        next_attempt_at: datetime | None = None,
    ) -> bool: ...

    async def mark_cancelled(self, alert_id: str, now: datetime) -> bool: ...

    async def mark_read(self, alert_id: str, now: datetime) -> bool: ...

    async def cancel_for_task(self, task_id: str, now: datetime) -> list[str]: ...

    async def release_stale_claims(self, older_than: datetime) -> int: ...

    async def due_alerts(self, owner_id: str, now: datetime) -> list[Alert]: ...

    async def retryable_alerts(
        self, owner_id: str, now: datetime, max_retries: int
    ) -> list[Alert]: ...

    async def pending_alerts(self, owner_id: str) -> list[Alert]: ...

    async def failed_alerts(self, owner_id: str) -> list[Alert]: ...

    async def alerts_for_task(self, task_id: str) -> list[Alert]: ...

    async def count_by_state(self, owner_id: str) -> dict[AlertState, int]: ...

    async def list_owner_ids(self) -> list[str]: ...


def _placeholders(states: tuple[AlertState, ...]) -> str:
    return ", ".join("?" for _ in states)


def _values(states: tuple[AlertState, ...]) -> tuple[str, ...]:
    return tuple(s.value for s in states)


class SQLiteAlertStore:
    """Persists alerts in SQLite; transitions are conditional ``UPDATE``s."""

    def __init__(self, db_path: Path) -> None:
        self._db = SQLiteDatabase(db_path, [_CREATE_TABLE, _CREATE_INDEX])

    # -- Internal helpers ------------------------------------------------------

    async def _transition(
        self,
        alert_id: str,
        expected: tuple[AlertState, ...],
        assignments: str,
        params: tuple,
        extra_where: str = "",
        extra_params: tuple = (),
    ) -> bool:
        async with self._db.connect() as db:
            cursor = await db.execute(
                f"UPDATE alerts SET {assignments} "
                f"WHERE id = ? AND state IN ({_placeholders(expected)}){extra_where}",
                (*params, alert_id, *_values(expected), *extra_params),
            )
            await db.commit()
            return cursor.rowcount == 1

    async def _select(self, where: str, params: tuple, order: str = "fire_at") -> list[Alert]:
        async with self._db.connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM alerts WHERE {where} ORDER BY {order}", params
            )
            rows = await cursor.fetchall()
        return [Alert.from_row(row) for row in rows]

    # -- Writes ----------------------------------------------------------------

    async def insert(self, alerts: Iterable[Alert]) -> None:
        """Bulk insert; every alert starts ``pending``."""
        rows = []
        for alert in alerts:
            alert.state = AlertState.PENDING
            rows.append(alert.to_row())
        if not rows:
            return
        async with self._db.connect() as db:
            await db.executemany(
                f"INSERT INTO alerts ({_COLUMNS}) VALUES "
                "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            await db.commit()
        logger.debug("Inserted %d alert(s)", len(rows))

    async def claim(self, alert_id: str, now: datetime) -> bool:
        """pending → dispatching."""
        return await self._transition(
            alert_id,
            _CLAIMABLE,
            "state = ?, claimed_at = ?",
            (AlertState.DISPATCHING.value, format_instant(now)),
        )

    async def claim_retry(self, alert_id: str, now: datetime, max_retries: int) -> bool:
        """failed → dispatching, only while attempts remain."""
        return await self._transition(
            alert_id,
            (AlertState.FAILED,),
            "state = ?, claimed_at = ?",
            (AlertState.DISPATCHING.value, format_instant(now)),
            " AND attempts < ?",
            (max_retries,),
        )

    async def mark_sent(self, alert_id: str, now: datetime) -> bool:
        return await self._transition(
            alert_id,
            _SENDABLE,
            "state = ?, sent_at = ?, last_error = NULL, next_attempt_at = NULL",
            (AlertState.SENT.value, format_instant(now)),
        )

    async def mark_failed(
        self,
        alert_id: str,
        reason: str,
        now: datetime,
        next_attempt_at: datetime | None = None,
    ) -> bool:
        return await self._transition(
            alert_id,
            _SENDABLE,
            "state = ?, attempts = attempts + 1, last_error = ?, next_attempt_at = ?",
            (AlertState.FAILED.value, reason, format_instant(next_attempt_at)),
        )

    async def mark_cancelled(self, alert_id: str, now: datetime) -> bool:
        return await self._transition(
            alert_id,
            (AlertState.PENDING,),
            "state = ?, cancelled_at = ?",
            (AlertState.CANCELLED.value, format_instant(now)),
        )

    async def mark_read(self, alert_id: str, now: datetime) -> bool:
        return await self._transition(
            alert_id,
            _READABLE,
            "state = ?, read_at = ?",
            (AlertState.READ.value, format_instant(now)),
        )

    async def cancel_for_task(self, task_id: str, now: datetime) -> list[str]:
        """Cancel every pending or failed alert of a task. Returns the cancelled IDs."""
        candidates = await self._select(
            f"task_id = ? AND state IN ({_placeholders(_CANCELLABLE)})",
            (task_id, *_values(_CANCELLABLE)),
        )
        cancelled = []
        for alert in candidates:
            ok = await self._transition(
                alert.id,
                _CANCELLABLE,
                "state = ?, cancelled_at = ?",
                (AlertState.CANCELLED.value, format_instant(now)),
            )
            if ok:
                cancelled.append(alert.id)
        if cancelled:
            logger.info("Cancelled %d alert(s) for task %s", len(cancelled), task_id)
        return cancelled

    async def release_stale_claims(self, older_than: datetime) -> int:
        """Return claims abandoned by a crashed dispatcher to ``pending``."""
        async with self._db.connect() as db:
            cursor = await db.execute(
                "UPDATE alerts SET state = ?, claimed_at = NULL "
                "WHERE state = ? AND claimed_at < ?",
                (
                    AlertState.PENDING.value,
                    AlertState.DISPATCHING.value,
                    format_instant(older_than),
                ),
            )
            await db.commit()
            released = cursor.rowcount
        if released:
            logger.warning("Released %d stale alert claim(s)", released)
        return released

    # -- Reads -----------------------------------------------------------------

    async def get_alert(self, alert_id: str) -> Alert | None:
        alerts = await self._select("id = ?", (alert_id,))
        return alerts[0] if alerts else None

    async def due_alerts(self, owner_id: str, now: datetime) -> list[Alert]:
        return await self._select(
            "owner_id = ? AND state = ? AND fire_at <= ?",
            (owner_id, AlertState.PENDING.value, format_instant(now)),
        )

    async def retryable_alerts(
        self, owner_id: str, now: datetime, max_retries: int
    ) -> list[Alert]:
        return await self._select(
            "owner_id = ? AND state = ? AND attempts < ? "
            "AND (next_attempt_at IS NULL OR next_attempt_at <= ?)",
            (owner_id, AlertState.FAILED.value, max_retries, format_instant(now)),
        )

    async def pending_alerts(self, owner_id: str) -> list[Alert]:
        return await self._select(
            "owner_id = ? AND state = ?", (owner_id, AlertState.PENDING.value)
        )

    async def failed_alerts(self, owner_id: str) -> list[Alert]:
        return await self._select(
            "owner_id = ? AND state = ?", (owner_id, AlertState.FAILED.value)
        )

    async def alerts_for_task(self, task_id: str) -> list[Alert]:
        return await self._select("task_id = ?", (task_id,), order="fire_at, created_at")

    async def count_by_state(self, owner_id: str) -> dict[AlertState, int]:
        async with self._db.connect() as db:
            cursor = await db.execute(
                "SELECT state, COUNT(*) FROM alerts WHERE owner_id = ? GROUP BY state",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        counts = dict.fromkeys(AlertState, 0)
        for state, count in rows:
            counts[AlertState(state)] = count
        return counts

    async def list_owner_ids(self) -> list[str]:
        async with self._db.connect() as db:
            cursor = await db.execute("SELECT DISTINCT owner_id FROM alerts ORDER BY owner_id")
            rows = await cursor.fetchall()
        return [row[0] for row in rows]


class InMemoryAlertStore:
    """Dict-backed alert store.

    Transitions check and assign without awaiting in between, so on a single
    event loop they are atomic.
    """

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._keys: set[tuple[str, int, int]] = set()

    def _cas(
        self, alert_id: str, expected: tuple[AlertState, ...], new: AlertState
    ) -> Alert | None:
        alert = self._alerts.get(alert_id)
        if alert is None or alert.state not in expected:
            return None
        alert.state = new
        return alert

    def _select(self, predicate) -> list[Alert]:
        found = [copy.deepcopy(a) for a in self._alerts.values() if predicate(a)]
        found.sort(key=lambda a: a.fire_at)
        return found

    async def insert(self, alerts: Iterable[Alert]) -> None:
        batch = list(alerts)
        keys = {(a.task_id, int(a.offset.total_seconds()), a.task_revision) for a in batch}
        if len(keys) != len(batch) or keys & self._keys:
            msg = "Duplicate alert for (task_id, offset, revision)"
            raise ConflictError(msg)
        for alert in batch:
            alert.state = AlertState.PENDING
            self._alerts[alert.id] = copy.deepcopy(alert)
        self._keys |= keys

    async def get_alert(self, alert_id: str) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    async def claim(self, alert_id: str, now: datetime) -> bool:
        alert = self._cas(alert_id, _CLAIMABLE, AlertState.DISPATCHING)
        if alert is None:
            return False
        alert.claimed_at = now
        return True

    async def claim_retry(self, alert_id: str, now: datetime, max_retries: int) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None or alert.state != AlertState.FAILED or alert.attempts >= max_retries:
            return False
        alert.state = AlertState.DISPATCHING
        alert.claimed_at = now
        return True

    async def mark_sent(self, alert_id: str, now: datetime) -> bool:
        alert = self._cas(alert_id, _SENDABLE, AlertState.SENT)
        if alert is None:
            return False
        alert.sent_at = now
        alert.last_error = None
        alert.next_attempt_at = None
        return True

    async def mark_failed(
        self,
        alert_id: str,
        reason: str,
        now: datetime,
        next_attempt_at: datetime | None = None,
    ) -> bool:
        alert = self._cas(alert_id, _SENDABLE, AlertState.FAILED)
        if alert is None:
            return False
        alert.attempts += 1
        alert.last_error = reason
        alert.next_attempt_at = next_attempt_at
        return True

    async def mark_cancelled(self, alert_id: str, now: datetime) -> bool:
        alert = self._cas(alert_id, (AlertState.PENDING,), AlertState.CANCELLED)
        if alert is None:
            return False
        alert.cancelled_at = now
        return True

    async def mark_read(self, alert_id: str, now: datetime) -> bool:
        alert = self._cas(alert_id, _READABLE, AlertState.READ)
        if alert is None:
            return False
        alert.read_at = now
        return True

    async def cancel_for_task(self, task_id: str, now: datetime) -> list[str]:
        cancelled = []
        for alert in list(self._alerts.values()):
            if alert.task_id != task_id:
                continue
            if self._cas(alert.id, _CANCELLABLE, AlertState.CANCELLED) is not None:
                alert.cancelled_at = now
                cancelled.append(alert.id)
        if cancelled:
            logger.info("Cancelled %d alert(s) for task %s", len(cancelled), task_id)
        return cancelled

    async def release_stale_claims(self, older_than: datetime) -> int:
        released = 0
        for alert in self._alerts.values():
            if (
                alert.state == AlertState.DISPATCHING
                and alert.claimed_at is not None
                and alert.claimed_at < older_than
            ):
                alert.state = AlertState.PENDING
                alert.claimed_at = None
                released += 1
        if released:
            logger.warning("Released %d stale alert claim(s)", released)
        return released

    async def due_alerts(self, owner_id: str, now: datetime) -> list[Alert]:
        return self._select(lambda a: a.owner_id == owner_id and a.is_due(now))

    async def retryable_alerts(
        self, owner_id: str, now: datetime, max_retries: int
    ) -> list[Alert]:
        return self._select(
            lambda a: a.owner_id == owner_id
            and a.state == AlertState.FAILED
            and a.attempts < max_retries
            and (a.next_attempt_at is None or a.next_attempt_at <= now)
        )

    async def pending_alerts(self, owner_id: str) -> list[Alert]:
        return self._select(lambda a: a.owner_id == owner_id and a.state == AlertState.PENDING)

    async def failed_alerts(self, owner_id: str) -> list[Alert]:
        return self._select(lambda a: a.owner_id == owner_id and a.state == AlertState.FAILED)

    async def alerts_for_task(self, task_id: str) -> list[Alert]:
        return self._select(lambda a: a.task_id == task_id)

    async def count_by_state(self, owner_id: str) -> dict[AlertState, int]:
        counts = dict.fromkeys(AlertState, 0)
        for alert in self._alerts.values():
            if alert.owner_id == owner_id:
                counts[alert.state] += 1
        return counts

    async def list_owner_ids(self) -> list[str]:
        return sorted({a.owner_id for a in self._alerts.values()})
