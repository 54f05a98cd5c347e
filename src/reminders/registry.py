"""ReminderRegistry — which scheduler jobs belong to which task."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger

from src.reminders.errors import InvalidSchedule
from src.reminders.strategies import derive_expressions
from src.reminders.timing import DerivationContext

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime, time

    from apscheduler.job import Job
    from apscheduler.schedulers.base import BaseScheduler

    from src.reminders.models import Task, Variant

logger = logging.getLogger(__name__)

# A reminder more than this late is dropped rather than sent
MISFIRE_GRACE_SECONDS = 300


def job_id_for(task_id: str, variant: Variant) -> str:
    return f"{task_id}:{variant.value}"


@dataclass
class _Registration:
    fingerprint: tuple
    job_ids: dict[Variant, str] = field(default_factory=dict)


class ReminderRegistry:
    """Owns the mapping from task ID to its live scheduler jobs.

    Each variant of a task becomes its own job, so firings of different
    variants run independently.  Registering a task that already has a job
    set is a no-op: callers get ``[]`` back and the existing jobs stay.  Use
    :meth:`unregister` first to replace them.

    All access to the job table goes through ``_lock``; registration happens
    both at startup and while other reminders are firing.

    Args:
        scheduler: APScheduler instance the jobs are added to.
        job_func: Callable invoked as ``job_func(task_id, variant)`` on each firing.
        timezone: IANA zone every crontab is evaluated in.
        anchor: Fixed daily anchor time shared by all tasks.
        clock: Returns the current zone-aware time.
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        job_func: Callable,
        timezone: str,
        anchor: time,
        clock: Callable[[], datetime],
    ) -> None:
        self._scheduler = scheduler
        self._job_func = job_func
        self._timezone = timezone
        self._anchor = anchor
        self._clock = clock
        self._lock = threading.Lock()
        self._registrations: dict[str, _Registration] = {}

    # -- Mutation --------------------------------------------------------------

    def register(self, task: Task) -> list[str]:
        """Add one job per variant of an active task. Returns the new job IDs."""
        if not task.is_active:
            logger.debug("Not registering %s task %s", task.status.value, task.id)
            return []

        with self._lock:
            if task.id in self._registrations:
                logger.info("Task '%s' (%s) is already registered; ignoring", task.name, task.id)
                return []

            registration = _Registration(fingerprint=task.fingerprint())
            # Recorded even when derivation fails so reconciliation does not
            # retry an unchanged broken task every pass
            self._registrations[task.id] = registration

            ctx = DerivationContext(self._timezone, self._anchor, self._clock())
            try:
                expressions = derive_expressions(task, ctx)
            except InvalidSchedule:
                logger.exception("Cannot derive reminders for '%s' (%s)", task.name, task.id)
                return []

            for variant, expr in expressions.items():
                job_id = job_id_for(task.id, variant)
                try:
                    self._scheduler.add_job(
                        self._job_func,
                        trigger=CronTrigger.from_crontab(expr, timezone=self._timezone),
                        id=job_id,
                        name=f"{task.name} [{variant.value}]",
                        args=[task.id, variant],
                        misfire_grace_time=MISFIRE_GRACE_SECONDS,
                        coalesce=True,
                        max_instances=1,
                        replace_existing=True,
                    )
                except Exception:
                    logger.exception(
                        "Failed to register %s reminder for '%s' (%s) with %r",
                        variant.value,
                        task.name,
                        task.id,
                        expr,
                    )
                    continue
                registration.job_ids[variant] = job_id
                logger.info(
                    "Registered %s reminder for '%s' (%s): %s",
                    variant.value,
                    task.name,
                    task.id,
                    expr,
                )

            return list(registration.job_ids.values())

    def unregister(self, task_id: str) -> bool:
        """Remove every job of *task_id*. Returns False if it was not registered."""
        with self._lock:
            registration = self._registrations.pop(task_id, None)
            if registration is None:
                return False
            for job_id in registration.job_ids.values():
                try:
                    self._scheduler.remove_job(job_id)
                except JobLookupError:
                    logger.debug("Job %s not found in scheduler (may already be removed)", job_id)
        logger.info("Unregistered task %s", task_id)
        return True

    # -- Queries ---------------------------------------------------------------

    def is_registered(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._registrations

    def registered_task_ids(self) -> set[str]:
        with self._lock:
            return set(self._registrations)

    def job_ids(self, task_id: str) -> list[str]:
        with self._lock:
            registration = self._registrations.get(task_id)
            return list(registration.job_ids.values()) if registration else []

    def fingerprint(self, task_id: str) -> tuple | None:
        with self._lock:
            registration = self._registrations.get(task_id)
            return registration.fingerprint if registration else None

    def get_job(self, task_id: str, variant: Variant) -> Job | None:
        """The live scheduler job for one variant of a task."""
        with self._lock:
            registration = self._registrations.get(task_id)
            job_id = registration.job_ids.get(variant) if registration else None
        return self._scheduler.get_job(job_id) if job_id else None

    def jobs(self, task_id: str) -> list[Job]:
        return [
            job
            for job in (self._scheduler.get_job(job_id) for job_id in self.job_ids(task_id))
            if job is not None
        ]
