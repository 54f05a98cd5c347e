"""Shared test fixtures."""

import pytest


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


class FakeRoster:
    """In-memory RosterDirectory: ``{group_id: [person_id, ...]}``."""

    def __init__(self, groups: dict[str, list[str]] | None = None) -> None:
        self.groups = groups or {}

    async def non_exempt_members(self, group_id: str) -> list[str]:
        return list(self.groups.get(group_id, []))


@pytest.fixture
def roster() -> FakeRoster:
    return FakeRoster({"group1": ["alice", "bob", "carol"]})
