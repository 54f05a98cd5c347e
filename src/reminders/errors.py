"""Reminder engine exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import date


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class ConfigurationError(ReminderError):
    """Startup configuration is unusable (bad timezone, anchor time, ...)."""


class InvalidSchedule(ConfigurationError):
    """A crontab or time-of-day string could not be parsed."""


class DuplicateCompletion(ReminderError):
    """The person already checked in for this task today.

    Not a system failure: callers report it as "already checked in".
    """

    def __init__(self, task_id: str, person_id: str, day: date) -> None:
        self.task_id = task_id
        self.person_id = person_id
        self.day = day
        super().__init__(
            f"{person_id} already completed task {task_id} on {day.isoformat()}"
        )
