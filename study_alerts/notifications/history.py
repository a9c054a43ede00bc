"""Append-only notification history, one log per owner."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from study_alerts.clock import format_instant, parse_instant
from study_alerts.db import SQLiteDatabase

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS notification_history (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    alert_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    priority TEXT NOT NULL,
    title TEXT NOT NULL,
    delivered TEXT NOT NULL DEFAULT '[]',
    failed TEXT NOT NULL DEFAULT '{}',
    ok INTEGER NOT NULL,
    created_at TEXT NOT NULL
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_history_owner ON notification_history (owner_id, created_at)
"""

_COLUMNS = (
    "id, owner_id, alert_id, task_id, kind, priority, title, delivered, failed, ok, created_at"
)


@dataclass
class NotificationRecord:
    """Outcome of one dispatch attempt.

    Attributes:
        delivered: Channels that accepted the alert.
        failed: Channel name → failure reason.
        ok: At least one channel succeeded.
    """

    owner_id: str
    alert_id: str
    task_id: str
    kind: str
    priority: str
    title: str
    created_at: datetime
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    ok: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class NotificationHistory(Protocol):
    async def append(self, record: NotificationRecord) -> None: ...

    async def list_for_owner(
        self, owner_id: str, limit: int | None = None
    ) -> list[NotificationRecord]: ...

    async def count(self, owner_id: str, *, ok: bool | None = None) -> int: ...


class InMemoryNotificationHistory:
    def __init__(self) -> None:
        self._records: dict[str, list[NotificationRecord]] = {}

    async def append(self, record: NotificationRecord) -> None:
        self._records.setdefault(record.owner_id, []).append(record)

    async def list_for_owner(
        self, owner_id: str, limit: int | None = None
    ) -> list[NotificationRecord]:
        records = list(reversed(self._records.get(owner_id, [])))
        return records[:limit] if limit is not None else records

    async def count(self, owner_id: str, *, ok: bool | None = None) -> int:
        return sum(
            1 for r in self._records.get(owner_id, []) if ok is None or r.ok == ok
        )


class SQLiteNotificationHistory:
    """Persists the notification log in SQLite. Rows are never updated."""

    def __init__(self, db_path: Path) -> None:
        self._db = SQLiteDatabase(db_path, [_CREATE_TABLE, _CREATE_INDEX])

    async def append(self, record: NotificationRecord) -> None:
        async with self._db.connect() as db:
            await db.execute(
                f"INSERT INTO notification_history ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.owner_id,
                    record.alert_id,
                    record.task_id,
                    record.kind,
                    record.priority,
                    record.title,
                    json.dumps(record.delivered),
                    json.dumps(record.failed),
                    int(record.ok),
                    format_instant(record.created_at),
                ),
            )
            await db.commit()

    async def list_for_owner(
        self, owner_id: str, limit: int | None = None
    ) -> list[NotificationRecord]:
        sql = (
            f"SELECT {_COLUMNS} FROM notification_history WHERE owner_id = ? "
            "ORDER BY created_at DESC, rowid DESC"
        )
        params: tuple = (owner_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (owner_id, limit)
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [
            NotificationRecord(
                id=row[0],
                owner_id=row[1],
                alert_id=row[2],
                task_id=row[3],
                kind=row[4],
                priority=row[5],
                title=row[6],
                delivered=json.loads(row[7]),
                failed=json.loads(row[8]),
                ok=bool(row[9]),
                created_at=parse_instant(row[10]),
            )
            for row in rows
        ]

    async def count(self, owner_id: str, *, ok: bool | None = None) -> int:
        sql = "SELECT COUNT(*) FROM notification_history WHERE owner_id = ?"
        params: tuple = (owner_id,)
        if ok is not None:
            sql += " AND ok = ?"
            params = (owner_id, int(ok))
        async with self._db.connect() as db:
            cursor = await db.execute(sql, params)
            row = await cursor.fetchone()
        return row[0] if row else 0
