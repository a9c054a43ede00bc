"""Tests for the task stores — SQLite and in-memory share one contract."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from study_alerts.tasks.models import Priority, Task, TaskStatus
from study_alerts.tasks.store import InMemoryTaskStore, SQLiteTaskStore

START = datetime(2030, 1, 15, 14, 0, tzinfo=UTC)


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path: Path):
    if request.param == "sqlite":
        return SQLiteTaskStore(db_path=tmp_path / "test.db")
    return InMemoryTaskStore()


def _make_task(task_id: str = "t1", owner_id: str = "alice", **kwargs) -> Task:
    defaults = {
        "title": "Cardiology lecture",
        "scheduled_time": START,
        "alert_offsets": [timedelta(minutes=30), timedelta(minutes=5)],
        "channels": ["dashboard"],
        "created_at": START - timedelta(days=1),
    }
    defaults.update(kwargs)
    return Task(id=task_id, owner_id=owner_id, **defaults)


# -- add_task / get_task -------------------------------------------------------


async def test_add_and_get_task(store) -> None:
    task = _make_task(location="Hall B", priority=Priority.HIGH)
    await store.add_task(task)

    fetched = await store.get_task("alice", "t1")
    assert fetched is not None
    assert fetched == task


async def test_get_task_not_found(store) -> None:
    assert await store.get_task("alice", "missing") is None


async def test_get_task_is_owner_scoped(store) -> None:
    await store.add_task(_make_task())
    assert await store.get_task("bob", "t1") is None


# -- save_task -----------------------------------------------------------------


async def test_save_task_updates_fields(store) -> None:
    task = _make_task()
    await store.add_task(task)

    task.status = TaskStatus.COMPLETED
    task.completed_at = START
    task.revision = 3
    assert await store.save_task(task) is True

    fetched = await store.get_task("alice", "t1")
    assert fetched.status == TaskStatus.COMPLETED
    assert fetched.completed_at == START
    assert fetched.revision == 3


async def test_save_unknown_task_returns_false(store) -> None:
    assert await store.save_task(_make_task("ghost")) is False


async def test_remove_task(store) -> None:
    await store.add_task(_make_task())

    assert await store.remove_task("bob", "t1") is False
    assert await store.remove_task("alice", "t1") is True
    assert await store.get_task("alice", "t1") is None
    assert await store.remove_task("alice", "t1") is False
    assert await store.list_owner_ids() == []


async def test_returned_tasks_are_copies(store) -> None:
    await store.add_task(_make_task())
    fetched = await store.get_task("alice", "t1")
    fetched.title = "changed"

    again = await store.get_task("alice", "t1")
    assert again.title == "Cardiology lecture"


# -- list_tasks ----------------------------------------------------------------


async def test_list_tasks_ordered_by_scheduled_time(store) -> None:
    await store.add_task(_make_task("late", scheduled_time=START + timedelta(hours=3)))
    await store.add_task(_make_task("early", scheduled_time=START - timedelta(hours=3)))
    await store.add_task(_make_task("mid"))

    tasks = await store.list_tasks("alice")
    assert [t.id for t in tasks] == ["early", "mid", "late"]


async def test_list_tasks_filters(store) -> None:
    await store.add_task(_make_task("a", category="academic", priority=Priority.HIGH))
    await store.add_task(_make_task("c", category="clinical"))
    await store.add_task(_make_task("d", category="clinical", status=TaskStatus.COMPLETED))

    clinical = await store.list_tasks("alice", category="clinical")
    assert {t.id for t in clinical} == {"c", "d"}

    high = await store.list_tasks("alice", priority=Priority.HIGH)
    assert [t.id for t in high] == ["a"]

    done = await store.list_tasks("alice", status=TaskStatus.COMPLETED)
    assert [t.id for t in done] == ["d"]


async def test_list_tasks_partitioned_by_owner(store) -> None:
    await store.add_task(_make_task("a1", owner_id="alice"))
    await store.add_task(_make_task("b1", owner_id="bob"))

    assert [t.id for t in await store.list_tasks("alice")] == ["a1"]
    assert [t.id for t in await store.list_tasks("bob")] == ["b1"]


async def test_list_owner_ids(store) -> None:
    await store.add_task(_make_task("b1", owner_id="bob"))
    await store.add_task(_make_task("a1", owner_id="alice"))
    await store.add_task(_make_task("a2", owner_id="alice"))

    assert await store.list_owner_ids() == ["alice", "bob"]


async def test_sqlite_store_persists_across_instances(tmp_path: Path) -> None:
    db_path = tmp_path / "test.db"
    await SQLiteTaskStore(db_path).add_task(_make_task())

    reopened = SQLiteTaskStore(db_path)
    assert (await reopened.get_task("alice", "t1")) is not None
