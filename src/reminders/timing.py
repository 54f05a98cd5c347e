"""Time expression derivation — turn a task's schedule into per-variant crontabs.

All derived variants (anchor, advance, deadline) recur daily, so they are
expressed as ``"M H * * *"``.  Only the notification trigger keeps the task's
own base schedule.  Minute arithmetic wraps modulo one day; it never clamps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from src.reminders.errors import InvalidSchedule
from src.reminders.models import Variant

if TYPE_CHECKING:
    from src.reminders.models import Task

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class DerivationContext:
    """Inputs shared by every derivation: zone, anchor time and "now"."""

    timezone: str
    anchor: time
    now: datetime


# -- Time-of-day arithmetic ----------------------------------------------------


def parse_time_of_day(value: str) -> time:
    """Parse ``"HH:MM"`` into a :class:`time`. Raises InvalidSchedule."""
    try:
        hour, minute = value.strip().split(":")
        return time(int(hour), int(minute))
    except (AttributeError, TypeError, ValueError) as exc:
        msg = f"Invalid time of day {value!r}, expected HH:MM"
        raise InvalidSchedule(msg) from exc


def minutes_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


def time_from_minutes(minutes: int) -> time:
    """Map any minute count onto the 24h clock, wrapping in both directions."""
    minutes %= MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def shift_time(t: time, minutes: int) -> time:
    """Move *t* by *minutes* (negative = earlier), wrapping past midnight."""
    return time_from_minutes(minutes_of_day(t) + minutes)


def daily_expression(t: time) -> str:
    """Crontab firing every day at *t*."""
    return f"{t.minute} {t.hour} * * *"


# -- Crontab helpers -----------------------------------------------------------


def validate_schedule(expr: str, timezone: str) -> CronTrigger:
    """Build a trigger for *expr*, raising InvalidSchedule if it is malformed."""
    try:
        return CronTrigger.from_crontab(expr, timezone=timezone)
    except (TypeError, ValueError) as exc:
        msg = f"Invalid schedule {expr!r}: {exc}"
        raise InvalidSchedule(msg) from exc


def is_single_daily_time(expr: str) -> bool:
    """True when *expr* fires exactly once a day at a fixed wall-clock time."""
    fields = expr.split()
    if len(fields) != 5:
        return False
    minute, hour, day, month, day_of_week = fields
    return (
        minute.isdigit()
        and hour.isdigit()
        and day == "*"
        and month == "*"
        and day_of_week == "*"
    )


# -- Variant derivations -------------------------------------------------------


def advance_before_deadline(deadline: time, advance_minutes: int) -> time:
    """``(deadline - advance_minutes) mod 24h`` as a time of day."""
    return shift_time(deadline, -advance_minutes)


def advance_before_trigger(
    schedule: str,
    advance_minutes: int,
    timezone: str,
    now: datetime,
) -> time:
    """Wall-clock time *advance_minutes* before the next run of *schedule*.

    The result is generalised to a daily time.  That is only exact for
    schedules that fire once a day at a fixed time; for weekly, monthly or
    multi-run schedules the daily advance reminder is imprecise and a warning
    is logged instead of failing.
    """
    trigger = validate_schedule(schedule, timezone)
    if not is_single_daily_time(schedule):
        logger.warning(
            "Schedule %r is not a single daily time; advance reminder is "
            "derived from its next run only and will recur daily",
            schedule,
        )
    next_fire = trigger.get_next_fire_time(None, now)
    if next_fire is None:
        msg = f"Schedule {schedule!r} never fires after {now.isoformat()}"
        raise InvalidSchedule(msg)
    shifted = next_fire - timedelta(minutes=advance_minutes)
    return shifted.time().replace(second=0, microsecond=0)


def deadline_expressions(task: Task, ctx: DerivationContext) -> dict[Variant, str]:
    """Anchor, advance-before-deadline and deadline crontabs for a deadline task."""
    expressions = {Variant.ANCHOR: daily_expression(ctx.anchor)}
    if not task.deadline:
        logger.info(
            "Task '%s' (%s) has no deadline; skipping advance/deadline reminders",
            task.name,
            task.id,
        )
        return expressions
    deadline = parse_time_of_day(task.deadline)
    advance = advance_before_deadline(deadline, task.advance_minutes)
    expressions[Variant.ADVANCE] = daily_expression(advance)
    expressions[Variant.DEADLINE] = daily_expression(deadline)
    return expressions


def notification_expressions(task: Task, ctx: DerivationContext) -> dict[Variant, str]:
    """Anchor, advance-before-trigger and trigger crontabs for a notification task."""
    advance = advance_before_trigger(
        task.schedule, task.advance_minutes, ctx.timezone, ctx.now
    )
    return {
        Variant.ANCHOR: daily_expression(ctx.anchor),
        Variant.ADVANCE: daily_expression(advance),
        Variant.TRIGGER: task.schedule,
    }
