"""Async SQLite connection helper shared by the durable stores.

Each store owns a ``SQLiteDatabase`` pointing at the configured file. A
connection is opened per operation (WAL mode, busy timeout), the store's
schema is created on first use, and any driver error surfaces as
``StoreUnavailableError`` so callers see one failure type regardless of
backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiosqlite

from study_alerts.errors import ConflictError, StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)


class SQLiteDatabase:
    """Opens connections to one SQLite file and applies a schema once.

    Args:
        path: Database file. Parent directories are created on first connect.
        schema: ``CREATE TABLE/INDEX IF NOT EXISTS`` statements.
    """

    def __init__(self, path: Path, schema: Sequence[str]) -> None:
        self._path = path
        self._schema = tuple(schema)
        self._initialised = False

    @property
    def path(self) -> Path:
        return self._path

    async def _open(self) -> aiosqlite.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._path))
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA busy_timeout=5000")
        if not self._initialised:
            for statement in self._schema:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield an open connection; driver errors become ``StoreUnavailableError``."""
        try:
            db = await self._open()
        except (aiosqlite.Error, OSError) as exc:
            logger.exception("Cannot open database %s", self._path)
            raise StoreUnavailableError(f"Cannot open database {self._path}") from exc
        try:
            yield db
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(str(exc)) from exc
        except aiosqlite.Error as exc:
            logger.exception("Database operation failed on %s", self._path)
            raise StoreUnavailableError(str(exc)) from exc
        finally:
            await db.close()
