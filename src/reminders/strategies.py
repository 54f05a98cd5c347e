"""Per-kind reminder behaviour, kept in a single table.

Each :class:`TaskKind` maps to a :class:`KindStrategy` bundling which variants
it owns, how their crontabs are derived, who a firing addresses, and what the
message says.  Adding a kind means adding one entry to ``STRATEGIES``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.reminders.models import TaskKind, Variant
from src.reminders.timing import (
    DerivationContext,
    deadline_expressions,
    notification_expressions,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import date, datetime

    from src.reminders.ledger import CompletionLedger
    from src.reminders.models import Task
    from src.reminders.ports import RosterDirectory


@dataclass(frozen=True)
class Audience:
    """Who a firing addresses, plus how many already checked in today."""

    person_ids: list[str]
    completed_count: int = 0

    @property
    def size(self) -> int:
        return len(self.person_ids)


@dataclass(frozen=True)
class Message:
    title: str
    body: str


@dataclass(frozen=True)
class KindStrategy:
    variants: tuple[Variant, ...]
    derive: Callable[[Task, DerivationContext], dict[Variant, str]]
    resolve_audience: Callable[
        [Task, date, RosterDirectory, CompletionLedger], Awaitable[Audience]
    ]
    build_message: Callable[[Task, Variant, Audience, datetime], Message]


# -- Audiences -----------------------------------------------------------------


async def incomplete_members(
    task: Task, day: date, roster: RosterDirectory, ledger: CompletionLedger
) -> Audience:
    members = await roster.non_exempt_members(task.group_id)
    pending = await ledger.incomplete_audience(task.id, day, members)
    # Keep roster order so mention lists are stable
    person_ids = [person_id for person_id in members if person_id in pending]
    return Audience(person_ids, completed_count=len(members) - len(person_ids))


async def all_members(
    task: Task, day: date, roster: RosterDirectory, ledger: CompletionLedger
) -> Audience:
    return Audience(await roster.non_exempt_members(task.group_id))


# -- Messages ------------------------------------------------------------------


def _footer(task: Task) -> str:
    parts = []
    if task.description:
        parts.append(task.description)
    parts.append(f"Reply `done #{task.id[:8]}` once finished.")
    return "\n\n".join(parts)


def deadline_message(
    task: Task, variant: Variant, audience: Audience, now: datetime
) -> Message:
    deadline = task.deadline_time
    due = deadline.strftime("%H:%M") if deadline else "end of day"

    if variant is Variant.ANCHOR:
        title = "Morning reminder"
        status = f"Due today by {due}"
    elif variant is Variant.ADVANCE:
        title = "Deadline approaching"
        status = f"{task.advance_minutes} minutes left, due at {due}"
    elif deadline is not None and now.strftime("%H:%M") > due:
        title = "Overdue"
        status = "**The deadline has passed, please finish as soon as possible!**"
    else:
        title = "Deadline reached"
        status = f"It is now the deadline: {due}"

    body = (
        f"### {title}\n\n"
        f"Task: **{task.name}**\n"
        f"{status}\n"
        f"Still pending: **{audience.size}**\n\n"
        f"{_footer(task)}"
    )
    return Message(title=title, body=body)


def notification_message(
    task: Task, variant: Variant, audience: Audience, now: datetime
) -> Message:
    if variant is Variant.ANCHOR:
        title = "Today's reminder"
        status = "Scheduled for today"
    elif variant is Variant.ADVANCE:
        title = "Coming up"
        status = f"Starts in {task.advance_minutes} minutes"
    else:
        title = "Reminder"
        status = f"Now: {now.strftime('%H:%M')}"

    body = f"### {title}\n\n**{task.name}**\n{status}"
    if task.description:
        body += f"\n\n{task.description}"
    return Message(title=title, body=body)


STRATEGIES: dict[TaskKind, KindStrategy] = {
    TaskKind.DEADLINE: KindStrategy(
        variants=(Variant.ANCHOR, Variant.ADVANCE, Variant.DEADLINE),
        derive=deadline_expressions,
        resolve_audience=incomplete_members,
        build_message=deadline_message,
    ),
    TaskKind.NOTIFICATION: KindStrategy(
        variants=(Variant.ANCHOR, Variant.ADVANCE, Variant.TRIGGER),
        derive=notification_expressions,
        resolve_audience=all_members,
        build_message=notification_message,
    ),
}


def strategy_for(task: Task) -> KindStrategy:
    return STRATEGIES[task.kind]


def derive_expressions(task: Task, ctx: DerivationContext) -> dict[Variant, str]:
    """Crontab per variant the task owns. Deadline tasks without a deadline get fewer."""
    strategy = strategy_for(task)
    expressions = strategy.derive(task, ctx)
    return {v: expressions[v] for v in strategy.variants if v in expressions}
