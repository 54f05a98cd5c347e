"""ReminderEngine — APScheduler lifecycle, task registration and reconciliation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from datetime import time as dt_time
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.reminders.errors import ConfigurationError
from src.reminders.models import TaskStatus, Variant
from src.reminders.registry import ReminderRegistry
from src.reminders.timing import parse_time_of_day

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.reminders.events import TaskCreated, TaskEventBus
    from src.reminders.executor import ReminderExecutor
    from src.reminders.models import Task
    from src.reminders.store import TaskStore

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "reminders:reconcile"


@dataclass(frozen=True)
class ReconcileResult:
    added: int = 0
    removed: int = 0
    updated: int = 0


class ReminderEngine:
    """Drives reminder firings from persisted tasks.

    Every (task, variant) job runs as its own asyncio task, so a slow or
    hanging send only holds up that one firing.  :meth:`stop` lets in-flight
    firings finish before the scheduler shuts down.

    Args:
        store: TaskStore tasks are loaded from.
        executor: ReminderExecutor run on each firing.
        events: Optional TaskEventBus announcing newly created tasks.
        timezone: IANA timezone string (default from settings).
        anchor_time: ``HH:MM`` daily anchor (default from settings).
        reload_interval_minutes: Period of the reconciliation pass.
        clock: Returns the current zone-aware time (override in tests).

    Raises:
        ConfigurationError: the timezone or anchor time is invalid.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: ReminderExecutor,
        *,
        events: TaskEventBus | None = None,
        timezone: str | None = None,
        anchor_time: str | None = None,
        reload_interval_minutes: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._events = events
        self._timezone = timezone or settings.scheduler_timezone
        try:
            self._zone = ZoneInfo(self._timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Invalid scheduler timezone {self._timezone!r}"
            raise ConfigurationError(msg) from exc
        self._anchor = parse_time_of_day(anchor_time or settings.anchor_time)
        self._reload_minutes = reload_interval_minutes or settings.reload_interval_minutes
        self._clock = clock or (lambda: datetime.now(self._zone))

        self._scheduler = AsyncIOScheduler(timezone=self._zone)
        self._registry = ReminderRegistry(
            self._scheduler, self._run_variant, self._timezone, self._anchor, self.now
        )
        self._inflight: set[asyncio.Task] = set()
        self._consumer: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def registry(self) -> ReminderRegistry:
        return self._registry

    @property
    def anchor(self) -> dt_time:
        return self._anchor

    def now(self) -> datetime:
        return self._clock()

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register every active task, start the scheduler and the event consumer."""
        tasks = await self._store.list_active_tasks()
        for task in tasks:
            self._registry.register(task)

        self._scheduler.add_job(
            self.reconcile,
            trigger=IntervalTrigger(minutes=self._reload_minutes, timezone=self._zone),
            id=RECONCILE_JOB_ID,
            name="Reconcile reminder jobs",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        if self._events is not None:
            self._consumer = asyncio.create_task(self._consume_events())
        logger.info(
            "Reminder engine started with %d active task(s) (tz=%s, anchor=%s)",
            len(tasks),
            self._timezone,
            self._anchor.strftime("%H:%M"),
        )

    async def stop(self) -> None:
        """Stop taking new firings, wait for in-flight ones, then shut down."""
        if not self._running:
            return
        self._running = False

        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

        self._scheduler.pause()
        pending = [t for t in self._inflight if t is not asyncio.current_task()]
        if pending:
            logger.info("Waiting for %d in-flight reminder(s) to finish", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        self._scheduler.shutdown(wait=False)
        logger.info("Reminder engine stopped")

    # -- Task management -------------------------------------------------------

    def register_task(self, task: Task) -> list[str]:
        """Register a task's reminder jobs (no-op if it already has some)."""
        return self._registry.register(task)

    def unregister_task(self, task_id: str) -> bool:
        return self._registry.unregister(task_id)

    async def pause_task(self, task_id: str) -> bool:
        """Pause a task in the store and drop its jobs."""
        self._registry.unregister(task_id)
        return await self._store.update_status(task_id, TaskStatus.PAUSED)

    async def resume_task(self, task_id: str) -> bool:
        """Reactivate a paused task and register its jobs again.

        Only paused tasks can be resumed; anything else returns False.
        """
        task = await self._store.get_task(task_id)
        if task is None or task.status is not TaskStatus.PAUSED:
            logger.info("Not resuming task %s: not paused", task_id)
            return False
        updated = await self._store.update_status(task_id, TaskStatus.ACTIVE)
        task = await self._store.get_task(task_id)
        if updated and task is not None:
            self._registry.register(task)
        return updated

    async def cancel_task(self, task_id: str) -> bool:
        """Delete a task and drop its jobs."""
        self._registry.unregister(task_id)
        deleted = await self._store.delete_task(task_id)
        if deleted:
            await self._store.update_run_bookkeeping(task_id, None, None)
            logger.info("Cancelled task: %s", task_id)
        return deleted

    async def catch_up(self, task: Task) -> bool:
        """Fire the anchor reminder now if today's anchor time already passed.

        The anchor job's next run is then pushed past today so members are
        not reminded twice.  Returns True if a reminder was sent.
        """
        now = self.now()
        if not task.is_active or now.time() < self._anchor:
            return False

        logger.info("Anchor time passed; catching up on '%s' (%s)", task.name, task.id)
        try:
            fired = await self._executor.fire(task.id, Variant.ANCHOR)
        finally:
            self._skip_anchor_today(task.id, now)
        if fired:
            await self._update_bookkeeping(task.id)
        return fired

    async def reconcile(self) -> ReconcileResult:
        """Bring the live jobs in line with the persisted tasks.

        New active tasks are registered, paused/deleted/missing ones are
        removed, and tasks whose schedule fields changed are re-registered.
        """
        with self._tracked():
            tasks = await self._store.list_tasks()
            by_id = {task.id: task for task in tasks}
            registered = self._registry.registered_task_ids()
            added = removed = updated = 0

            for task_id in registered:
                task = by_id.get(task_id)
                if task is None or not task.is_active:
                    self._registry.unregister(task_id)
                    removed += 1
                elif self._registry.fingerprint(task_id) != task.fingerprint():
                    self._registry.unregister(task_id)
                    self._registry.register(task)
                    updated += 1

            for task in tasks:
                if task.is_active and task.id not in registered:
                    self._registry.register(task)
                    added += 1

            result = ReconcileResult(added=added, removed=removed, updated=updated)
            if added or removed or updated:
                logger.info(
                    "Reconciled reminders: %d added, %d removed, %d updated",
                    added,
                    removed,
                    updated,
                )
            else:
                logger.debug("Reconciled reminders: no changes")
            return result

    # -- Internal --------------------------------------------------------------

    @contextlib.contextmanager
    def _tracked(self):  # noqa: ANN202
        """Count the current asyncio task as in flight until the block exits."""
        current = asyncio.current_task()
        if current is not None:
            self._inflight.add(current)
        try:
            yield
        finally:
            if current is not None:
                self._inflight.discard(current)

    async def _run_variant(self, task_id: str, variant: Variant) -> None:
        """Callback invoked by APScheduler. Delegates to the executor."""
        with self._tracked():
            fired = await self._executor.fire(task_id, variant)
            if fired:
                await self._update_bookkeeping(task_id)

    async def _update_bookkeeping(self, task_id: str) -> None:
        """Store the last run (now) and the earliest upcoming run of any variant."""
        next_runs = [
            job.next_run_time
            for job in self._registry.jobs(task_id)
            if getattr(job, "next_run_time", None) is not None
        ]
        next_run = min(next_runs).isoformat() if next_runs else None
        try:
            await self._store.update_run_bookkeeping(task_id, self.now().isoformat(), next_run)
        except Exception:
            logger.exception("Failed to update run bookkeeping for task %s", task_id)

    def _skip_anchor_today(self, task_id: str, now: datetime) -> None:
        job = self._registry.get_job(task_id, Variant.ANCHOR)
        next_run = getattr(job, "next_run_time", None) if job else None
        if next_run is None or next_run.astimezone(self._zone).date() > now.date():
            return
        tomorrow = datetime.combine(now.date() + timedelta(days=1), dt_time(0), tzinfo=self._zone)
        job.modify(next_run_time=job.trigger.get_next_fire_time(None, tomorrow))
        logger.debug("Anchor job for task %s moved to %s", task_id, job.next_run_time)

    async def _consume_events(self) -> None:
        """Register and catch up every task announced on the event bus."""
        while True:
            event = await self._events.get()
            handler = asyncio.create_task(self._on_task_created(event))
            self._inflight.add(handler)
            handler.add_done_callback(self._inflight.discard)

    async def _on_task_created(self, event: TaskCreated) -> None:
        try:
            task = await self._store.get_task(event.task_id)
            if task is None:
                logger.warning("Created task %s not found in store", event.task_id)
                return
            self._registry.register(task)
            await self.catch_up(task)
        except Exception:
            logger.exception("Failed to set up reminders for new task %s", event.task_id)
        finally:
            self._events.task_done()
