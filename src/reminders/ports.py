"""Collaborator protocols the reminder engine depends on."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class RosterDirectory(Protocol):
    """Source of group membership."""

    async def non_exempt_members(self, group_id: str) -> list[str]:
        """Person IDs in *group_id*, excluding the exempt (overseer) role."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Delivers a reminder to a group."""

    async def send(
        self,
        target: str,
        title: str,
        body: str,
        *,
        mentions: list[str] | None = None,
        channel: str | None = None,
    ) -> bool:
        """Send a titled markdown message mentioning *mentions*. Returns True on success."""
        ...
