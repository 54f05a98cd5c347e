"""RosterStore — group membership via libsql."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.config import settings
from src.db import SchemaStore

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS group_members (
        group_id     TEXT NOT NULL,
        person_id    TEXT NOT NULL,
        display_name TEXT NOT NULL DEFAULT '',
        role         TEXT NOT NULL DEFAULT 'member',
        created_at   TEXT NOT NULL,
        updated_at   TEXT NOT NULL,
        PRIMARY KEY (group_id, person_id)
    )
    """,
)


class RosterStore(SchemaStore):
    """Persists who belongs to which group, and in what role.

    Filled by whatever syncs membership from the chat platform; the reminder
    engine only reads it.  Members holding the exempt role (the overseers)
    are never addressed by reminders.

    Singleton accessed via ``RosterStore.get()``.  Pass an explicit *db_path*
    for test isolation.
    """

    schema = _SCHEMA
    _instance: RosterStore | None = None

    def __init__(self, db_path: Path | None = None, exempt_role: str | None = None) -> None:
        super().__init__(db_path)
        self._exempt_role = exempt_role or settings.exempt_role

    @classmethod
    def get(cls) -> RosterStore:
        """Return the shared RosterStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def upsert_member(
        self,
        group_id: str,
        person_id: str,
        display_name: str = "",
        role: str = "member",
    ) -> dict:
        """Insert or update a membership. Returns the row as a dict."""
        now = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            await db.execute_write(
                """
                INSERT INTO group_members
                    (group_id, person_id, display_name, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (group_id, person_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    role = excluded.role,
                    updated_at = excluded.updated_at
                """,
                (group_id, person_id, display_name, role, now, now),
            )
            return {
                "group_id": group_id,
                "person_id": person_id,
                "display_name": display_name,
                "role": role,
            }
        finally:
            await db.close()

    async def remove_member(self, group_id: str, person_id: str) -> bool:
        """Delete a membership. Returns True if a row was removed."""
        db = await self._connect()
        try:
            cursor = await db.execute_write(
                "DELETE FROM group_members WHERE group_id = ? AND person_id = ?",
                (group_id, person_id),
            )
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def members(self, group_id: str) -> list[dict]:
        """Every member of *group_id*, overseers included."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT person_id, display_name, role FROM group_members
                WHERE group_id = ?
                ORDER BY created_at, person_id
                """,
                (group_id,),
            )
            rows = await cursor.fetchall()
            return [
                {"person_id": row[0], "display_name": row[1], "role": row[2]}
                for row in rows
            ]
        finally:
            await db.close()

    async def non_exempt_members(self, group_id: str) -> list[str]:
        """Person IDs in *group_id* that reminders should address."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT person_id FROM group_members
                WHERE group_id = ? AND role != ?
                ORDER BY created_at, person_id
                """,
                (group_id, self._exempt_role),
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        finally:
            await db.close()

    async def display_names(self, group_id: str) -> dict[str, str]:
        """Map person_id → display name (falls back to the ID)."""
        return {
            m["person_id"]: m["display_name"] or m["person_id"]
            for m in await self.members(group_id)
        }
