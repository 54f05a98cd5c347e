"""Completion statistics per task and day."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.people.roster import RosterStore
    from src.reminders.ledger import CompletionStore
    from src.reminders.models import Task


@dataclass
class TaskStats:
    task_id: str
    task_name: str
    day: date
    total_members: int
    completed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    late: list[str] = field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return len(self.completed)

    @property
    def completion_rate(self) -> float:
        """Percentage of non-exempt members who checked in (0 for an empty roster)."""
        if not self.total_members:
            return 0.0
        return self.completed_count / self.total_members * 100


class StatsService:
    """Builds :class:`TaskStats` from the roster and the completion store."""

    def __init__(self, completions: CompletionStore, roster: RosterStore) -> None:
        self._completions = completions
        self._roster = roster

    async def daily_stats(self, task: Task, day: date) -> TaskStats:
        members = await self._roster.non_exempt_members(task.group_id)
        names = await self._roster.display_names(task.group_id)
        records = await self._completions.completions_between(task.id, day, day)
        return _build(task, day, members, names, records)

    async def weekly_stats(self, task: Task, today: date) -> list[TaskStats]:
        """One entry per day from this week's Monday through *today*."""
        monday = today - timedelta(days=today.weekday())
        members = await self._roster.non_exempt_members(task.group_id)
        names = await self._roster.display_names(task.group_id)
        records = await self._completions.completions_between(task.id, monday, today)
        days = [monday + timedelta(days=offset) for offset in range((today - monday).days + 1)]
        return [
            _build(task, day, members, names, [r for r in records if r.day == day])
            for day in days
        ]


def _build(task, day, members, names, records) -> TaskStats:  # noqa: ANN001
    done = {r.person_id: r for r in records}
    return TaskStats(
        task_id=task.id,
        task_name=task.name,
        day=day,
        total_members=len(members),
        completed=[
            done[pid].person_name or names.get(pid, pid) for pid in done if pid in members
        ],
        pending=[names.get(pid, pid) for pid in members if pid not in done],
        late=[
            done[pid].person_name or names.get(pid, pid)
            for pid in done
            if pid in members and not done[pid].on_time
        ],
    )


def format_report(stats: TaskStats) -> str:
    """Markdown summary of one day's check-ins."""
    lines = [
        f"**{stats.task_name} report**",
        "",
        f"Date: {stats.day.isoformat()}",
        f"Members: {stats.total_members}",
        f"Checked in: {stats.completed_count}",
        f"Completion rate: {stats.completion_rate:.1f}%",
    ]
    if stats.completed:
        lines += ["", "**Checked in:**", *(f"- {name}" for name in stats.completed)]
    if stats.late:
        lines += ["", "**Late:**", *(f"- {name}" for name in stats.late)]
    if stats.pending:
        lines += ["", "**Pending:**", *(f"- {name}" for name in stats.pending)]
    return "\n".join(lines)
