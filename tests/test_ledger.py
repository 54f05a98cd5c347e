"""Tests for the completion ledger."""

import asyncio
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from src.reminders.errors import DuplicateCompletion
from src.reminders.ledger import CompletionLedger, CompletionStore
from src.reminders.models import Task, TaskKind
from src.reminders.store import TaskStore

pytestmark = pytest.mark.usefixtures("_no_turso")

TZ = ZoneInfo("Asia/Shanghai")
DAY = date(2025, 6, 2)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def task(db_path: Path) -> Task:
    store = TaskStore(db_path=db_path, timezone="Asia/Shanghai")
    return await store.create_task(
        Task(
            id="task1",
            name="Daily report",
            kind=TaskKind.DEADLINE,
            schedule="0 9 * * *",
            group_id="group1",
            deadline="17:00",
        )
    )


@pytest.fixture
def ledger(db_path: Path, task: Task) -> CompletionLedger:
    return CompletionLedger(CompletionStore(db_path=db_path))


# -- record_completion ---------------------------------------------------------


async def test_record_and_query(ledger: CompletionLedger) -> None:
    record = await ledger.record_completion("task1", "alice", DAY, True, person_name="Alice")

    assert record.person_name == "Alice"
    assert await ledger.has_completed("task1", "alice", DAY) is True
    assert await ledger.has_completed("task1", "bob", DAY) is False
    assert await ledger.has_completed("task1", "alice", date(2025, 6, 3)) is False


async def test_duplicate_raises(ledger: CompletionLedger) -> None:
    await ledger.record_completion("task1", "alice", DAY, True)

    with pytest.raises(DuplicateCompletion) as exc_info:
        await ledger.record_completion("task1", "alice", DAY, False)

    assert exc_info.value.person_id == "alice"
    assert "already completed" in str(exc_info.value)


async def test_duplicate_keeps_first_record(ledger: CompletionLedger, db_path: Path) -> None:
    await ledger.record_completion("task1", "alice", DAY, True)
    with pytest.raises(DuplicateCompletion):
        await ledger.record_completion("task1", "alice", DAY, False)

    stored = await CompletionStore(db_path=db_path).get("task1", "alice", DAY)
    assert stored is not None
    assert stored.on_time is True


async def test_concurrent_duplicates_store_one_record(
    ledger: CompletionLedger, db_path: Path
) -> None:
    results = await asyncio.gather(
        ledger.record_completion("task1", "alice", DAY, True),
        ledger.record_completion("task1", "alice", DAY, True),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, DuplicateCompletion)]
    assert len(errors) == 1
    records = await CompletionStore(db_path=db_path).completions_between("task1", DAY, DAY)
    assert len(records) == 1


async def test_concurrent_mixed_writers(ledger: CompletionLedger, db_path: Path) -> None:
    results = await asyncio.gather(
        ledger.record_completion("task1", "alice", DAY, True),
        ledger.record_completion("task1", "bob", DAY, True),
        ledger.record_completion("task1", "alice", DAY, False),
        return_exceptions=True,
    )

    assert not [r for r in results if isinstance(r, ValueError)]
    assert len([r for r in results if isinstance(r, DuplicateCompletion)]) == 1
    records = await CompletionStore(db_path=db_path).completions_between("task1", DAY, DAY)
    assert sorted(r.person_id for r in records) == ["alice", "bob"]


async def test_concurrent_distinct_writers_all_recorded(
    ledger: CompletionLedger, db_path: Path
) -> None:
    people = [f"person{i}" for i in range(8)]

    await asyncio.gather(*(ledger.record_completion("task1", p, DAY, True) for p in people))

    records = await CompletionStore(db_path=db_path).completions_between("task1", DAY, DAY)
    assert sorted(r.person_id for r in records) == people


async def test_same_person_next_day_allowed(ledger: CompletionLedger) -> None:
    await ledger.record_completion("task1", "alice", DAY, True)
    await ledger.record_completion("task1", "alice", date(2025, 6, 3), True)

    assert await ledger.has_completed("task1", "alice", date(2025, 6, 3)) is True


# -- incomplete_audience -------------------------------------------------------


async def test_incomplete_audience_shrinks(ledger: CompletionLedger) -> None:
    roster = ["alice", "bob", "carol"]
    assert await ledger.incomplete_audience("task1", DAY, roster) == {"alice", "bob", "carol"}

    await ledger.record_completion("task1", "bob", DAY, True)
    assert await ledger.incomplete_audience("task1", DAY, roster) == {"alice", "carol"}

    await ledger.record_completion("task1", "alice", DAY, False)
    await ledger.record_completion("task1", "carol", DAY, True)
    assert await ledger.incomplete_audience("task1", DAY, roster) == set()


async def test_incomplete_audience_ignores_non_roster(ledger: CompletionLedger) -> None:
    await ledger.record_completion("task1", "former_member", DAY, True)

    assert await ledger.incomplete_audience("task1", DAY, ["alice"]) == {"alice"}


# -- check_in ------------------------------------------------------------------


async def test_check_in_on_time(ledger: CompletionLedger, task: Task) -> None:
    record = await ledger.check_in(task, "alice", datetime(2025, 6, 2, 16, 59, tzinfo=TZ))
    assert record.on_time is True
    assert record.day == DAY


async def test_check_in_late(ledger: CompletionLedger, task: Task) -> None:
    record = await ledger.check_in(task, "bob", datetime(2025, 6, 2, 17, 1, tzinfo=TZ))
    assert record.on_time is False


async def test_check_in_notification_always_on_time(ledger: CompletionLedger) -> None:
    notice = Task(
        id="task1",
        name="Standup",
        kind=TaskKind.NOTIFICATION,
        schedule="30 9 * * *",
        group_id="group1",
    )
    record = await ledger.check_in(notice, "carol", datetime(2025, 6, 2, 23, 0, tzinfo=TZ))
    assert record.on_time is True


# -- completions_between -------------------------------------------------------


async def test_completions_between(ledger: CompletionLedger, db_path: Path) -> None:
    await ledger.record_completion("task1", "alice", date(2025, 6, 1), True)
    await ledger.record_completion("task1", "alice", date(2025, 6, 2), True)
    await ledger.record_completion("task1", "bob", date(2025, 6, 4), False)

    records = await CompletionStore(db_path=db_path).completions_between(
        "task1", date(2025, 6, 2), date(2025, 6, 4)
    )
    assert [(r.person_id, r.day) for r in records] == [
        ("alice", date(2025, 6, 2)),
        ("bob", date(2025, 6, 4)),
    ]
