"""Reminder data models — tasks, completion records, and firing audit rows."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from enum import Enum

from src.config import settings


class TaskKind(str, Enum):
    """What a task asks of its group."""

    DEADLINE = "deadline"  # must be done by a time of day; late members are chased
    NOTIFICATION = "notification"  # plain reminder, everyone is addressed


class TaskStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class Variant(str, Enum):
    """One of the reminder firings derived from a task's base schedule."""

    ANCHOR = "anchor"
    ADVANCE = "advance"
    DEADLINE = "deadline"
    TRIGGER = "trigger"


@dataclass
class Task:
    """A recurring obligation tracked for one group.

    Attributes:
        id: Unique identifier (UUID hex).
        name: Human-readable name.
        kind: :class:`TaskKind` — deadline-bound or notification.
        schedule: Base schedule as a 5-field crontab (``"0 9 * * 1-5"``).
        group_id: Owning group / chat identifier; notifications go here.
        deadline: ``"HH:MM"`` time of day, only meaningful for deadline tasks.
        advance_minutes: How far ahead of the deadline/trigger to warn.
        description: Optional text rendered into reminder bodies.
        creator_id: Person who created the task, if known.
        status: :class:`TaskStatus`; only active tasks are scheduled.
        created_at: ISO 8601 timestamp.
        updated_at: ISO 8601 timestamp.
        last_run_at: ISO 8601 timestamp of the last firing.
        next_run_at: ISO 8601 timestamp of the next planned firing.
    """

    id: str
    name: str
    kind: TaskKind
    schedule: str
    group_id: str
    deadline: str | None = None
    advance_minutes: int = field(default_factory=lambda: settings.default_advance_minutes)
    description: str = ""
    creator_id: str | None = None
    status: TaskStatus = TaskStatus.ACTIVE
    created_at: str = ""
    updated_at: str = ""
    last_run_at: str | None = None
    next_run_at: str | None = None

    def __post_init__(self) -> None:
        self.kind = TaskKind(self.kind)
        self.status = TaskStatus(self.status)
        if not self.created_at:
            self.created_at = datetime.now(UTC).isoformat()
        if not self.updated_at:
            self.updated_at = self.created_at

    # -- Convenience properties ------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status is TaskStatus.ACTIVE

    @property
    def is_deadline_bound(self) -> bool:
        return self.kind is TaskKind.DEADLINE

    @property
    def deadline_time(self) -> time | None:
        """The deadline as a :class:`datetime.time`, or None if unset.

        Raises InvalidSchedule if the stored deadline is not ``HH:MM``.
        """
        from src.reminders.timing import parse_time_of_day

        if not self.deadline:
            return None
        return parse_time_of_day(self.deadline)

    def fingerprint(self) -> tuple:
        """Fields whose change requires the task's jobs to be re-registered."""
        return (
            self.kind.value,
            self.schedule,
            self.deadline,
            self.advance_minutes,
            self.status.value,
        )

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.name,
            self.description,
            self.kind.value,
            self.schedule,
            self.deadline,
            self.advance_minutes,
            self.group_id,
            self.creator_id,
            self.status.value,
            self.created_at,
            self.updated_at,
            self.last_run_at,
            self.next_run_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a database row tuple."""
        return cls(
            id=row[0],
            name=row[1],
            description=row[2] or "",
            kind=TaskKind(row[3]),
            schedule=row[4],
            deadline=row[5],
            advance_minutes=int(row[6]),
            group_id=row[7],
            creator_id=row[8],
            status=TaskStatus(row[9]),
            created_at=row[10],
            updated_at=row[11],
            last_run_at=row[12],
            next_run_at=row[13],
        )


@dataclass(frozen=True)
class CompletionRecord:
    """A person's check-in for a task on one calendar day."""

    task_id: str
    person_id: str
    day: date
    on_time: bool
    person_name: str | None = None
    completed_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass(frozen=True)
class ReminderFiring:
    """Audit row written once per variant firing."""

    task_id: str
    group_id: str
    variant: Variant
    message: str
    audience_size: int
    completed_count: int = 0
    sent_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex
