"""Owner profiles — who a student is and where to reach them on each channel."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from study_alerts.db import SQLiteDatabase

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS owners (
    owner_id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    language TEXT NOT NULL DEFAULT 'en',
    addresses TEXT NOT NULL DEFAULT '{}'
)
"""


@dataclass
class OwnerProfile:
    """Recipient details for one student.

    Attributes:
        addresses: Channel name → recipient ID on that channel (Telegram chat
            ID, Slack user ID, phone number, ...).
    """

    owner_id: str
    name: str = ""
    language: str = "en"
    addresses: dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or "Student"

    def address_for(self, channel: str) -> str:
        """Recipient ID on *channel*; falls back to the owner ID."""
        return self.addresses.get(channel) or self.owner_id


class OwnerDirectory(Protocol):
    async def save(self, profile: OwnerProfile) -> None: ...

    async def get(self, owner_id: str) -> OwnerProfile | None: ...


class InMemoryOwnerDirectory:
    def __init__(self) -> None:
        self._profiles: dict[str, OwnerProfile] = {}

    async def save(self, profile: OwnerProfile) -> None:
        self._profiles[profile.owner_id] = profile

    async def get(self, owner_id: str) -> OwnerProfile | None:
        return self._profiles.get(owner_id)


class SQLiteOwnerDirectory:
    """Persists owner profiles in SQLite."""

    def __init__(self, db_path: Path) -> None:
        self._db = SQLiteDatabase(db_path, [_CREATE_TABLE])

    async def save(self, profile: OwnerProfile) -> None:
        async with self._db.connect() as db:
            await db.execute(
                """
                INSERT INTO owners (owner_id, name, language, addresses)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    name = excluded.name,
                    language = excluded.language,
                    addresses = excluded.addresses
                """,
                (profile.owner_id, profile.name, profile.language, json.dumps(profile.addresses)),
            )
            await db.commit()
        logger.info("Saved owner profile: %s", profile.owner_id)

    async def get(self, owner_id: str) -> OwnerProfile | None:
        async with self._db.connect() as db:
            cursor = await db.execute(
                "SELECT owner_id, name, language, addresses FROM owners WHERE owner_id = ?",
                (owner_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return OwnerProfile(
            owner_id=row[0], name=row[1], language=row[2], addresses=json.loads(row[3])
        )
