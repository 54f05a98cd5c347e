"""Tests for service wiring in src.main."""

from unittest.mock import patch

import pytest

from src.notifications.router import NotificationRouter
from src.notifications.webhook_channel import WebhookChannel
from src.people.roster import RosterStore
from src.reminders.engine import ReminderEngine
from src.reminders.errors import ConfigurationError
from src.reminders.store import TaskStore


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset singletons before and after each test."""
    TaskStore._reset()
    RosterStore._reset()
    NotificationRouter._reset()
    yield
    TaskStore._reset()
    RosterStore._reset()
    NotificationRouter._reset()


def test_build_engine_wires_components() -> None:
    from src.main import build_engine

    engine = build_engine()

    assert isinstance(engine, ReminderEngine)
    assert engine._store is TaskStore.get()
    # Task creations reach the engine's event bus
    assert TaskStore.get()._events is engine._events
    assert engine._executor._roster is RosterStore.get()
    assert engine._executor._sink is NotificationRouter.get()


def test_build_engine_registers_webhook_default() -> None:
    from src.main import build_engine

    build_engine()

    router = NotificationRouter.get()
    assert isinstance(router.get_channel("webhook"), WebhookChannel)
    assert router.default_channel_name == "webhook"


def test_build_engine_twice_reuses_channel() -> None:
    from src.main import build_engine

    build_engine()
    build_engine()

    assert NotificationRouter.get().list_channels() == ["webhook"]


def test_build_engine_invalid_timezone() -> None:
    from src.main import build_engine

    with (
        patch("src.main.settings.scheduler_timezone", "Mars/Olympus_Mons"),
        pytest.raises(ConfigurationError),
    ):
        build_engine()


def test_main_exits_on_configuration_error() -> None:
    from src.main import main

    with (
        patch("src.main.build_engine", side_effect=ConfigurationError("bad tz")),
        pytest.raises(SystemExit) as exc_info,
    ):
        main()

    assert exc_info.value.code == 1
