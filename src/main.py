"""Check-in reminder service entry point."""

import asyncio
import logging
import signal
import sys

from src.config import settings
from src.notifications.router import NotificationRouter
from src.notifications.webhook_channel import WebhookChannel
from src.people.roster import RosterStore
from src.reminders.engine import ReminderEngine
from src.reminders.errors import ConfigurationError
from src.reminders.events import TaskEventBus
from src.reminders.executor import ReminderExecutor
from src.reminders.ledger import CompletionLedger, CompletionStore
from src.reminders.store import FiringLog, TaskStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_engine() -> ReminderEngine:
    """Wire stores, the notification router and the executor into an engine.

    Raises ConfigurationError for an invalid timezone or anchor time.
    """
    events = TaskEventBus()
    store = TaskStore.get()
    store.attach_events(events)

    router = NotificationRouter.get()
    if router.get_channel("webhook") is None:
        router.register_channel(WebhookChannel())
    if router.get_channel(settings.default_notification_channel) is not None:
        router.set_default_channel(settings.default_notification_channel)
    else:
        logger.warning(
            "Default notification channel '%s' is not registered",
            settings.default_notification_channel,
        )

    executor = ReminderExecutor(
        store=store,
        ledger=CompletionLedger(CompletionStore()),
        roster=RosterStore.get(),
        sink=router,
        firing_log=FiringLog(),
        timezone=settings.scheduler_timezone,
    )
    return ReminderEngine(
        store=store,
        executor=executor,
        events=events,
        timezone=settings.scheduler_timezone,
    )


async def run() -> None:
    """Run the engine until SIGINT/SIGTERM, then drain in-flight reminders."""
    engine = build_engine()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine.start()
    logger.info("Check-in reminders running (tz=%s)", settings.scheduler_timezone)
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await engine.stop()
        channel = NotificationRouter.get().get_channel("webhook")
        if isinstance(channel, WebhookChannel):
            await channel.close()


def main() -> None:
    try:
        asyncio.run(run())
    except ConfigurationError:
        logger.exception("Invalid configuration, refusing to start")
        sys.exit(1)


if __name__ == "__main__":
    main()
