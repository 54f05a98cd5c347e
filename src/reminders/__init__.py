"""Group check-in reminders — derivation, registration, firing and the completion ledger."""

from src.reminders.engine import ReminderEngine
from src.reminders.errors import ConfigurationError, DuplicateCompletion, InvalidSchedule
from src.reminders.events import TaskCreated, TaskEventBus
from src.reminders.executor import ReminderExecutor
from src.reminders.ledger import CompletionLedger, CompletionStore
from src.reminders.models import Task, TaskKind, TaskStatus, Variant
from src.reminders.registry import ReminderRegistry
from src.reminders.stats import StatsService, TaskStats, format_report
from src.reminders.store import FiringLog, TaskStore

__all__ = [
    "CompletionLedger",
    "CompletionStore",
    "ConfigurationError",
    "DuplicateCompletion",
    "FiringLog",
    "InvalidSchedule",
    "ReminderEngine",
    "ReminderExecutor",
    "ReminderRegistry",
    "StatsService",
    "Task",
    "TaskCreated",
    "TaskEventBus",
    "TaskKind",
    "TaskStats",
    "TaskStatus",
    "TaskStore",
    "Variant",
    "format_report",
]
