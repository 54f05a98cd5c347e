"""Completion ledger — at most one check-in per (task, person, day)."""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from src.db import SchemaStore
from src.reminders.errors import DuplicateCompletion
from src.reminders.models import CompletionRecord

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from src.reminders.models import Task

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS completion_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        person_id TEXT NOT NULL,
        person_name TEXT,
        task_date TEXT NOT NULL,
        on_time INTEGER NOT NULL DEFAULT 1,
        completed_at TEXT NOT NULL,
        UNIQUE (task_id, person_id, task_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_completion_task_date"
    " ON completion_records(task_id, task_date)",
)


class CompletionStore(SchemaStore):
    """libsql-backed completion records.

    The UNIQUE constraint plus ``ON CONFLICT DO NOTHING`` makes :meth:`insert`
    atomic and conflict-detecting across concurrent callers.
    """

    schema = _SCHEMA

    async def insert(self, record: CompletionRecord) -> bool:
        """Insert *record*. Returns False if the triple already exists."""
        db = await self._connect()
        try:
            cursor = await db.execute_write(
                """
                INSERT INTO completion_records
                    (task_id, person_id, person_name, task_date, on_time, completed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (task_id, person_id, task_date) DO NOTHING
                """,
                (
                    record.task_id,
                    record.person_id,
                    record.person_name,
                    record.day.isoformat(),
                    int(record.on_time),
                    record.completed_at,
                ),
            )
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def exists(self, task_id: str, person_id: str, day: date) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT 1 FROM completion_records
                WHERE task_id = ? AND person_id = ? AND task_date = ?
                """,
                (task_id, person_id, day.isoformat()),
            )
            return await cursor.fetchone() is not None
        finally:
            await db.close()

    async def get(self, task_id: str, person_id: str, day: date) -> CompletionRecord | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT task_id, person_id, task_date, on_time, person_name, completed_at
                FROM completion_records
                WHERE task_id = ? AND person_id = ? AND task_date = ?
                """,
                (task_id, person_id, day.isoformat()),
            )
            row = await cursor.fetchone()
            return _record_from_row(row) if row else None
        finally:
            await db.close()

    async def completed_person_ids(self, task_id: str, day: date) -> set[str]:
        """Everyone with a record for *task_id* on *day*."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT person_id FROM completion_records WHERE task_id = ? AND task_date = ?",
                (task_id, day.isoformat()),
            )
            rows = await cursor.fetchall()
            return {row[0] for row in rows}
        finally:
            await db.close()

    async def completions_between(
        self, task_id: str, start: date, end: date
    ) -> list[CompletionRecord]:
        """Records for *task_id* with ``start <= day <= end``, ordered by day."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT task_id, person_id, task_date, on_time, person_name, completed_at
                FROM completion_records
                WHERE task_id = ? AND task_date >= ? AND task_date <= ?
                ORDER BY task_date, completed_at
                """,
                (task_id, start.isoformat(), end.isoformat()),
            )
            rows = await cursor.fetchall()
            return [_record_from_row(row) for row in rows]
        finally:
            await db.close()


def _record_from_row(row: tuple) -> CompletionRecord:
    return CompletionRecord(
        task_id=row[0],
        person_id=row[1],
        day=date.fromisoformat(row[2]),
        on_time=bool(row[3]),
        person_name=row[4],
        completed_at=row[5],
    )


class CompletionLedger:
    """Domain operations over a :class:`CompletionStore`."""

    def __init__(self, store: CompletionStore) -> None:
        self._store = store

    async def record_completion(
        self,
        task_id: str,
        person_id: str,
        day: date,
        on_time: bool,
        person_name: str | None = None,
    ) -> CompletionRecord:
        """Record a check-in. Raises DuplicateCompletion if one exists for that day."""
        record = CompletionRecord(
            task_id=task_id,
            person_id=person_id,
            day=day,
            on_time=on_time,
            person_name=person_name,
        )
        if not await self._store.insert(record):
            logger.info("Duplicate check-in: task=%s person=%s day=%s", task_id, person_id, day)
            raise DuplicateCompletion(task_id, person_id, day)
        logger.info(
            "Recorded check-in: task=%s person=%s day=%s on_time=%s",
            task_id,
            person_id,
            day,
            on_time,
        )
        return record

    async def has_completed(self, task_id: str, person_id: str, day: date) -> bool:
        return await self._store.exists(task_id, person_id, day)

    async def incomplete_audience(
        self, task_id: str, day: date, roster: Iterable[str]
    ) -> set[str]:
        """Roster members without a completion for *day*."""
        completed = await self._store.completed_person_ids(task_id, day)
        return set(roster) - completed

    async def check_in(
        self,
        task: Task,
        person_id: str,
        now: datetime,
        person_name: str | None = None,
    ) -> CompletionRecord:
        """Record *person_id* completing *task* at local time *now*.

        The check-in counts for ``now``'s calendar day and is on time unless
        the task is deadline-bound and *now* is past its deadline.
        """
        deadline = task.deadline_time
        on_time = True
        if task.is_deadline_bound and deadline is not None:
            on_time = now.time().replace(tzinfo=None) <= deadline
        return await self.record_completion(
            task.id, person_id, now.date(), on_time, person_name=person_name
        )
