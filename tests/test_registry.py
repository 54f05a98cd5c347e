"""Tests for ReminderRegistry — task → scheduler job bookkeeping."""

from datetime import datetime, time
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.reminders.models import Task, TaskKind, TaskStatus, Variant
from src.reminders.registry import MISFIRE_GRACE_SECONDS, ReminderRegistry, job_id_for

TZ_NAME = "Asia/Shanghai"
NOW = datetime(2025, 6, 2, 9, 0, tzinfo=ZoneInfo(TZ_NAME))


async def _noop(task_id: str, variant: Variant) -> None:
    pass


@pytest.fixture
def scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone=ZoneInfo(TZ_NAME))


@pytest.fixture
def registry(scheduler: AsyncIOScheduler) -> ReminderRegistry:
    return ReminderRegistry(scheduler, _noop, TZ_NAME, time(10, 0), lambda: NOW)


def _make_task(task_id: str = "task1", **kwargs) -> Task:
    defaults = {
        "name": "Daily report",
        "kind": TaskKind.DEADLINE,
        "schedule": "0 9 * * *",
        "group_id": "group1",
        "deadline": "17:00",
        "advance_minutes": 60,
    }
    defaults.update(kwargs)
    return Task(id=task_id, **defaults)


def _hour_minute(job) -> tuple[str, str]:  # noqa: ANN001
    fields = {f.name: str(f) for f in job.trigger.fields}
    return fields["hour"], fields["minute"]


# -- register ------------------------------------------------------------------


def test_register_deadline_task(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    job_ids = registry.register(_make_task())

    assert sorted(job_ids) == ["task1:advance", "task1:anchor", "task1:deadline"]
    assert _hour_minute(scheduler.get_job("task1:anchor")) == ("10", "0")
    assert _hour_minute(scheduler.get_job("task1:advance")) == ("16", "0")
    assert _hour_minute(scheduler.get_job("task1:deadline")) == ("17", "0")


def test_job_settings(registry: ReminderRegistry, scheduler: AsyncIOScheduler) -> None:
    registry.register(_make_task())

    job = scheduler.get_job("task1:deadline")
    assert job.args == ("task1", Variant.DEADLINE)
    assert job.misfire_grace_time == MISFIRE_GRACE_SECONDS
    assert job.coalesce is True
    assert job.max_instances == 1


def test_register_notification_task(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    task = _make_task(
        kind=TaskKind.NOTIFICATION, schedule="30 14 * * *", deadline=None, advance_minutes=15
    )
    job_ids = registry.register(task)

    assert sorted(job_ids) == ["task1:advance", "task1:anchor", "task1:trigger"]
    assert _hour_minute(scheduler.get_job("task1:advance")) == ("14", "15")
    assert _hour_minute(scheduler.get_job("task1:trigger")) == ("14", "30")


def test_register_without_deadline_only_anchor(registry: ReminderRegistry) -> None:
    assert registry.register(_make_task(deadline=None)) == ["task1:anchor"]


def test_register_twice_is_noop(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    first = registry.register(_make_task())
    second = registry.register(_make_task(deadline="18:00"))

    assert len(first) == 3
    assert second == []
    assert len(scheduler.get_jobs()) == 3
    # First job set untouched
    assert _hour_minute(scheduler.get_job("task1:deadline")) == ("17", "0")


def test_register_inactive_task(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    assert registry.register(_make_task(status=TaskStatus.PAUSED)) == []
    assert registry.is_registered("task1") is False
    assert scheduler.get_jobs() == []


def test_register_invalid_deadline_records_empty_set(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    assert registry.register(_make_task(deadline="25:99")) == []
    assert registry.is_registered("task1") is True
    assert registry.job_ids("task1") == []
    assert scheduler.get_jobs() == []


def test_failed_variant_is_skipped() -> None:
    scheduler = MagicMock()
    scheduler.add_job.side_effect = [None, ValueError("boom"), None]
    registry = ReminderRegistry(scheduler, _noop, TZ_NAME, time(10, 0), lambda: NOW)

    job_ids = registry.register(_make_task())

    assert len(job_ids) == 2
    assert scheduler.add_job.call_count == 3


# -- unregister ----------------------------------------------------------------


def test_unregister_removes_all_jobs(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    registry.register(_make_task("t1"))
    registry.register(_make_task("t2"))

    assert registry.unregister("t1") is True

    assert registry.is_registered("t1") is False
    assert {j.id for j in scheduler.get_jobs()} == {
        "t2:anchor",
        "t2:advance",
        "t2:deadline",
    }


def test_unregister_unknown(registry: ReminderRegistry) -> None:
    assert registry.unregister("nope") is False


def test_unregister_tolerates_missing_job(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    registry.register(_make_task())
    scheduler.remove_job("task1:anchor")

    assert registry.unregister("task1") is True
    assert scheduler.get_jobs() == []


def test_register_after_unregister_replaces_jobs(
    registry: ReminderRegistry, scheduler: AsyncIOScheduler
) -> None:
    registry.register(_make_task())
    registry.unregister("task1")
    registry.register(_make_task(deadline="18:00"))

    assert len(scheduler.get_jobs()) == 3
    assert _hour_minute(scheduler.get_job("task1:deadline")) == ("18", "0")
    assert registry.fingerprint("task1") == _make_task(deadline="18:00").fingerprint()


# -- Queries -------------------------------------------------------------------


def test_queries(registry: ReminderRegistry) -> None:
    registry.register(_make_task("t1"))

    assert registry.registered_task_ids() == {"t1"}
    assert registry.get_job("t1", Variant.ADVANCE).id == job_id_for("t1", Variant.ADVANCE)
    assert registry.get_job("t1", Variant.TRIGGER) is None
    assert registry.get_job("other", Variant.ANCHOR) is None
    assert len(registry.jobs("t1")) == 3
    assert registry.fingerprint("other") is None
