"""NotificationChannel protocol — interface for all notification delivery channels."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'webhook')."""
        ...

    async def send(
        self,
        target: str,
        title: str,
        body: str,
        *,
        mentions: list[str] | None = None,
    ) -> bool:
        """Send a titled markdown message to *target*. Returns True on success."""
        ...
