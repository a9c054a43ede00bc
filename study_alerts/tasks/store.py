"""Task persistence — the repository protocol plus SQLite and in-memory backends."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Protocol

from study_alerts.db import SQLiteDatabase
from study_alerts.tasks.models import Priority, Task, TaskStatus

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, owner_id, title, description, category, subcategory, location, notes, "
    "priority, status, scheduled_time, deadline, duration_minutes, alert_offsets, "
    "auto_alerts, channels, revision, created_at, updated_at, completed_at"
)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL,
    subcategory TEXT NOT NULL,
    location TEXT NOT NULL DEFAULT '',
    notes TEXT NOT NULL DEFAULT '',
    priority TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    scheduled_time TEXT NOT NULL,
    deadline TEXT,
    duration_minutes INTEGER NOT NULL DEFAULT 60,
    alert_offsets TEXT NOT NULL DEFAULT '[]',
    auto_alerts INTEGER NOT NULL DEFAULT 1,
    channels TEXT NOT NULL DEFAULT '[]',
    revision INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    completed_at TEXT
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_tasks_owner_time ON tasks (owner_id, scheduled_time)
"""


class TaskRepository(Protocol):
    """Storage contract for tasks, partitioned by ``owner_id``."""

    async def add_task(self, task: Task) -> Task: ...

    async def get_task(self, owner_id: str, task_id: str) -> Task | None: ...

    async def save_task(self, task: Task) -> bool: ...

    async def remove_task(self, owner_id: str, task_id: str) -> bool: ...

    async def list_tasks(
        self,
        owner_id: str,
        *,
        status: TaskStatus | None = None,
        category: str | None = None,
        priority: Priority | None = None,
    ) -> list[Task]: ...

    async def list_owner_ids(self) -> list[str]: ...


class SQLiteTaskStore:
    """Persists tasks in SQLite.

    Pass an explicit *db_path* per instance; tests use ``tmp_path / "test.db"``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db = SQLiteDatabase(db_path, [_CREATE_TABLE, _CREATE_INDEX])

    async def add_task(self, task: Task) -> Task:
        """Insert a new task. Returns the same task object."""
        async with self._db.connect() as db:
            await db.execute(
                f"INSERT INTO tasks ({_COLUMNS}) VALUES "
                "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                task.to_row(),
            )
            await db.commit()
        logger.info("Added task: %s (%s) for owner %s", task.title, task.id, task.owner_id)
        return task

    async def get_task(self, owner_id: str, task_id: str) -> Task | None:
        """Fetch a task by ID within the owner's partition, or None."""
        async with self._db.connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE id = ? AND owner_id = ?",
                (task_id, owner_id),
            )
            row = await cursor.fetchone()
        return Task.from_row(row) if row else None

    async def save_task(self, task: Task) -> bool:
        """Overwrite every mutable column of an existing task."""
        row = task.to_row()
        async with self._db.connect() as db:
            cursor = await db.execute(
                """
                UPDATE tasks SET
                    title = ?, description = ?, category = ?, subcategory = ?,
                    location = ?, notes = ?, priority = ?, status = ?,
                    scheduled_time = ?, deadline = ?, duration_minutes = ?,
                    alert_offsets = ?, auto_alerts = ?, channels = ?, revision = ?,
                    created_at = ?, updated_at = ?, completed_at = ?
                WHERE id = ? AND owner_id = ?
                """,
                (*row[2:], task.id, task.owner_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def remove_task(self, owner_id: str, task_id: str) -> bool:
        """Hard-delete a task row. Only used to undo a failed creation."""
        async with self._db.connect() as db:
            cursor = await db.execute(
                "DELETE FROM tasks WHERE id = ? AND owner_id = ?", (task_id, owner_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def list_tasks(
        self,
        owner_id: str,
        *,
        status: TaskStatus | None = None,
        category: str | None = None,
        priority: Priority | None = None,
    ) -> list[Task]:
        """Return the owner's tasks ordered by scheduled time."""
        clauses = ["owner_id = ?"]
        params: list[str] = [owner_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(priority.value)
        async with self._db.connect() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE {' AND '.join(clauses)} "
                "ORDER BY scheduled_time, created_at",
                tuple(params),
            )
            rows = await cursor.fetchall()
        return [Task.from_row(row) for row in rows]

    async def list_owner_ids(self) -> list[str]:
        async with self._db.connect() as db:
            cursor = await db.execute("SELECT DISTINCT owner_id FROM tasks ORDER BY owner_id")
            rows = await cursor.fetchall()
        return [row[0] for row in rows]


class InMemoryTaskStore:
    """Dict-backed task store. State lives only as long as the instance."""

    def __init__(self) -> None:
        self._tasks: dict[str, dict[str, Task]] = {}

    async def add_task(self, task: Task) -> Task:
        self._tasks.setdefault(task.owner_id, {})[task.id] = copy.deepcopy(task)
        logger.info("Added task: %s (%s) for owner %s", task.title, task.id, task.owner_id)
        return task

    async def get_task(self, owner_id: str, task_id: str) -> Task | None:
        task = self._tasks.get(owner_id, {}).get(task_id)
        return copy.deepcopy(task) if task else None

    async def save_task(self, task: Task) -> bool:
        partition = self._tasks.get(task.owner_id, {})
        if task.id not in partition:
            return False
        partition[task.id] = copy.deepcopy(task)
        return True

    async def remove_task(self, owner_id: str, task_id: str) -> bool:
        return self._tasks.get(owner_id, {}).pop(task_id, None) is not None

    async def list_tasks(
        self,
        owner_id: str,
        *,
        status: TaskStatus | None = None,
        category: str | None = None,
        priority: Priority | None = None,
    ) -> list[Task]:
        tasks = [
            copy.deepcopy(t)
            for t in self._tasks.get(owner_id, {}).values()
            if (status is None or t.status == status)
            and (category is None or t.category == category)
            and (priority is None or t.priority == priority)
        ]
        tasks.sort(key=lambda t: (t.scheduled_time, t.created_at or t.scheduled_time))
        return tasks

    async def list_owner_ids(self) -> list[str]:
        return sorted(owner for owner, tasks in self._tasks.items() if tasks)
