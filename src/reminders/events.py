"""Task lifecycle events passed from persistence to the reminder engine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCreated:
    """Published once for every newly persisted task."""

    task_id: str
    kind: str
    schedule: str
    deadline: str | None
    group_id: str


class TaskEventBus:
    """Unbounded in-process queue of :class:`TaskCreated` events.

    The task store publishes; the reminder engine consumes.  Publishing never
    blocks, so creating a task does not depend on the engine being started.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[TaskCreated] = asyncio.Queue()

    def publish(self, event: TaskCreated) -> None:
        self._queue.put_nowait(event)
        logger.debug("Published %s for task %s", type(event).__name__, event.task_id)

    async def get(self) -> TaskCreated:
        """Wait for the next event."""
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published event has been processed."""
        await self._queue.join()

    def pending(self) -> int:
        return self._queue.qsize()
