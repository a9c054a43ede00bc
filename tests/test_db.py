"""Tests for the shared SQLite helper."""

from pathlib import Path

import pytest

from study_alerts.db import SQLiteDatabase
from study_alerts.errors import ConflictError, StoreUnavailableError

_SCHEMA = ["CREATE TABLE IF NOT EXISTS things (id TEXT PRIMARY KEY, name TEXT NOT NULL)"]


async def test_schema_applied_and_parent_created(tmp_path: Path) -> None:
    db = SQLiteDatabase(tmp_path / "nested" / "test.db", _SCHEMA)

    async with db.connect() as conn:
        await conn.execute("INSERT INTO things VALUES (?, ?)", ("t1", "one"))
        await conn.commit()

    async with db.connect() as conn:
        cursor = await conn.execute("SELECT name FROM things WHERE id = ?", ("t1",))
        row = await cursor.fetchone()
    assert row[0] == "one"
    assert (tmp_path / "nested" / "test.db").exists()


async def test_integrity_error_becomes_conflict(tmp_path: Path) -> None:
    db = SQLiteDatabase(tmp_path / "test.db", _SCHEMA)
    async with db.connect() as conn:
        await conn.execute("INSERT INTO things VALUES (?, ?)", ("t1", "one"))
        await conn.commit()

    with pytest.raises(ConflictError):
        async with db.connect() as conn:
            await conn.execute("INSERT INTO things VALUES (?, ?)", ("t1", "again"))


async def test_driver_error_becomes_store_unavailable(tmp_path: Path) -> None:
    db = SQLiteDatabase(tmp_path / "test.db", _SCHEMA)

    with pytest.raises(StoreUnavailableError):
        async with db.connect() as conn:
            await conn.execute("SELECT * FROM missing_table")


async def test_unopenable_path(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    db = SQLiteDatabase(blocker / "test.db", _SCHEMA)

    with pytest.raises(StoreUnavailableError):
        async with db.connect():
            pass
