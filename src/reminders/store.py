"""TaskStore and FiringLog — libsql persistence for tasks and reminder audits."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.config import settings
from src.db import SchemaStore
from src.reminders.events import TaskCreated
from src.reminders.models import ReminderFiring, Task, TaskStatus, Variant
from src.reminders.timing import parse_time_of_day, validate_schedule

if TYPE_CHECKING:
    from pathlib import Path

    from src.reminders.events import TaskEventBus

logger = logging.getLogger(__name__)

_TASK_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        kind TEXT NOT NULL,
        schedule TEXT NOT NULL,
        deadline TEXT,
        advance_minutes INTEGER NOT NULL DEFAULT 30,
        group_id TEXT NOT NULL,
        creator_id TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_run_at TEXT,
        next_run_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_group ON tasks(group_id, status)",
)

_FIRING_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS reminder_firings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        group_id TEXT NOT NULL,
        variant TEXT NOT NULL,
        message TEXT NOT NULL,
        audience_size INTEGER NOT NULL DEFAULT 0,
        completed_count INTEGER NOT NULL DEFAULT 0,
        sent_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_firings_task ON reminder_firings(task_id, sent_at)",
)


class TaskStore(SchemaStore):
    """Persists reminder tasks in SQLite / Turso.

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).  When an *events* bus
    is given, every created task is announced on it.
    """

    schema = _TASK_SCHEMA
    _instance: TaskStore | None = None

    def __init__(
        self,
        db_path: Path | None = None,
        events: TaskEventBus | None = None,
        timezone: str | None = None,
    ) -> None:
        super().__init__(db_path)
        self._events = events
        self._timezone = timezone or settings.scheduler_timezone

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def attach_events(self, events: TaskEventBus) -> None:
        """Announce future task creations on *events*."""
        self._events = events

    # -- Internal helpers ------------------------------------------------------

    async def _fetch_tasks(self, sql: str, params: tuple = ()) -> list[Task]:
        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            return [Task.from_row(row) for row in rows]
        finally:
            await db.close()

    # -- CRUD ------------------------------------------------------------------

    async def create_task(self, task: Task) -> Task:
        """Validate and insert a new task, then publish a TaskCreated event.

        Raises InvalidSchedule if the base schedule or deadline is malformed.
        """
        validate_schedule(task.schedule, self._timezone)
        if task.deadline:
            parse_time_of_day(task.deadline)

        db = await self._connect()
        try:
            await db.execute_write(
                """
                INSERT INTO tasks
                    (id, name, description, kind, schedule, deadline, advance_minutes,
                     group_id, creator_id, status, created_at, updated_at,
                     last_run_at, next_run_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                task.to_row(),
            )
        finally:
            await db.close()

        logger.info("Created task: %s (%s, kind=%s)", task.name, task.id, task.kind.value)
        if self._events is not None:
            self._events.publish(
                TaskCreated(
                    task_id=task.id,
                    kind=task.kind.value,
                    schedule=task.schedule,
                    deadline=task.deadline,
                    group_id=task.group_id,
                )
            )
        return task

    async def get_task(self, task_id: str) -> Task | None:
        """Fetch a task by ID, or None if not found."""
        tasks = await self._fetch_tasks("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return tasks[0] if tasks else None

    async def list_active_tasks(self) -> list[Task]:
        """Return all active tasks, oldest first."""
        return await self._fetch_tasks(
            "SELECT * FROM tasks WHERE status = ? ORDER BY created_at",
            (TaskStatus.ACTIVE.value,),
        )

    async def list_tasks(self) -> list[Task]:
        """Return every task regardless of status (deleted included)."""
        return await self._fetch_tasks("SELECT * FROM tasks ORDER BY created_at")

    async def get_by_group(self, group_id: str) -> list[Task]:
        """Return the active tasks owned by *group_id*, newest first."""
        return await self._fetch_tasks(
            """
            SELECT * FROM tasks
            WHERE group_id = ? AND status = ?
            ORDER BY created_at DESC
            """,
            (group_id, TaskStatus.ACTIVE.value),
        )

    async def update_task(self, task: Task) -> bool:
        """Persist edits to a task's schedule fields. Returns True if a row changed."""
        validate_schedule(task.schedule, self._timezone)
        if task.deadline:
            parse_time_of_day(task.deadline)
        task.updated_at = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            cursor = await db.execute_write(
                """
                UPDATE tasks
                SET name = ?, description = ?, kind = ?, schedule = ?, deadline = ?,
                    advance_minutes = ?, status = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    task.name,
                    task.description,
                    task.kind.value,
                    task.schedule,
                    task.deadline,
                    task.advance_minutes,
                    task.status.value,
                    task.updated_at,
                    task.id,
                ),
            )
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def update_status(self, task_id: str, status: TaskStatus) -> bool:
        """Set a task's lifecycle status. Returns True if a row was updated."""
        db = await self._connect()
        try:
            cursor = await db.execute_write(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, datetime.now(UTC).isoformat(), task_id),
            )
            updated = cursor.rowcount > 0
            if updated:
                logger.info("Task %s is now %s", task_id, status.value)
            return updated
        finally:
            await db.close()

    async def delete_task(self, task_id: str) -> bool:
        """Soft-delete a task. Completion and firing rows are kept."""
        return await self.update_status(task_id, TaskStatus.DELETED)

    async def update_run_bookkeeping(
        self,
        task_id: str,
        last_run: str | None,
        next_run: str | None,
    ) -> None:
        """Record when the task last fired and when it fires next."""
        db = await self._connect()
        try:
            await db.execute_write(
                "UPDATE tasks SET last_run_at = ?, next_run_at = ? WHERE id = ?",
                (last_run, next_run, task_id),
            )
        finally:
            await db.close()


class FiringLog(SchemaStore):
    """Append-only audit of reminder firings."""

    schema = _FIRING_SCHEMA

    async def append(self, firing: ReminderFiring) -> None:
        db = await self._connect()
        try:
            await db.execute_write(
                """
                INSERT INTO reminder_firings
                    (task_id, group_id, variant, message, audience_size,
                     completed_count, sent_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    firing.task_id,
                    firing.group_id,
                    firing.variant.value,
                    firing.message,
                    firing.audience_size,
                    firing.completed_count,
                    firing.sent_at,
                ),
            )
        finally:
            await db.close()

    async def list_for_task(self, task_id: str) -> list[ReminderFiring]:
        """Return a task's firings, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT task_id, group_id, variant, message, audience_size,
                       completed_count, sent_at
                FROM reminder_firings
                WHERE task_id = ?
                ORDER BY id
                """,
                (task_id,),
            )
            rows = await cursor.fetchall()
            return [
                ReminderFiring(
                    task_id=row[0],
                    group_id=row[1],
                    variant=Variant(row[2]),
                    message=row[3],
                    audience_size=row[4],
                    completed_count=row[5],
                    sent_at=row[6],
                )
                for row in rows
            ]
        finally:
            await db.close()
