"""ReminderExecutor — runs one reminder firing for a (task, variant) pair."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.config import settings
from src.reminders.errors import ConfigurationError
from src.reminders.models import ReminderFiring, Variant
from src.reminders.strategies import strategy_for

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.reminders.ledger import CompletionLedger
    from src.reminders.ports import NotificationSink, RosterDirectory
    from src.reminders.store import FiringLog, TaskStore

logger = logging.getLogger(__name__)


class ReminderExecutor:
    """Resolves the audience, sends the reminder and writes the audit row.

    Failures are logged and end the firing; nothing is retried and earlier
    steps are not rolled back.  The next scheduled firing is unaffected.

    Args:
        store: TaskStore to look tasks up in.
        ledger: CompletionLedger for "who is still pending today".
        roster: RosterDirectory listing each group's non-exempt members.
        sink: NotificationSink that delivers the message.
        firing_log: FiringLog receiving one audit row per firing.
        timezone: IANA zone defining "today" (default from settings).
        clock: Returns the current zone-aware time (override in tests).
        channel: Notification channel name override (None → sink default).
    """

    def __init__(
        self,
        store: TaskStore,
        ledger: CompletionLedger,
        roster: RosterDirectory,
        sink: NotificationSink,
        firing_log: FiringLog,
        *,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
        channel: str | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._roster = roster
        self._sink = sink
        self._firing_log = firing_log
        zone_name = timezone or settings.scheduler_timezone
        try:
            self._zone = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Invalid scheduler timezone {zone_name!r}"
            raise ConfigurationError(msg) from exc
        self._clock = clock or (lambda: datetime.now(self._zone))
        self._channel = channel

    async def fire(self, task_id: str, variant: Variant | str) -> bool:
        """Run one firing. Returns True if the reminder was sent and audited."""
        variant = Variant(variant)
        try:
            task = await self._store.get_task(task_id)
        except Exception:
            logger.exception("Task lookup failed: %s", task_id)
            return False
        if task is None:
            logger.warning("Reminder task not found: %s", task_id)
            return False
        if not task.is_active:
            logger.info("Skipping %s task: %s (%s)", task.status.value, task.name, task_id)
            return False

        strategy = strategy_for(task)
        if variant not in strategy.variants:
            logger.warning(
                "Task '%s' (%s) has no %s reminder", task.name, task_id, variant.value
            )
            return False

        now = self._clock()
        logger.info(
            "Firing %s reminder: '%s' (%s) group=%s",
            variant.value,
            task.name,
            task_id,
            task.group_id,
        )

        try:
            audience = await strategy.resolve_audience(
                task, now.date(), self._roster, self._ledger
            )
        except Exception:
            logger.exception("Audience lookup failed: '%s' (%s)", task.name, task_id)
            return False

        try:
            message = strategy.build_message(task, variant, audience, now)
        except Exception:
            logger.exception("Message build failed: '%s' (%s)", task.name, task_id)
            return False

        try:
            sent = await self._sink.send(
                task.group_id,
                message.title,
                message.body,
                mentions=audience.person_ids,
                channel=self._channel,
            )
        except Exception:
            logger.exception("Reminder send failed: '%s' (%s)", task.name, task_id)
            return False
        if not sent:
            logger.error(
                "Reminder send rejected: '%s' (%s) %s", task.name, task_id, variant.value
            )
            return False

        try:
            await self._firing_log.append(
                ReminderFiring(
                    task_id=task.id,
                    group_id=task.group_id,
                    variant=variant,
                    message=message.body,
                    audience_size=audience.size,
                    completed_count=audience.completed_count,
                )
            )
        except Exception:
            logger.exception("Failed to audit reminder: '%s' (%s)", task.name, task_id)
            return False

        logger.info(
            "Reminder sent: '%s' (%s) %s to %d member(s)",
            task.name,
            task_id,
            variant.value,
            audience.size,
        )
        return True
