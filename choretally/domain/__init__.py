"""Domain models and DTOs."""

from choretally.domain.completion import Completion, CompletionStatus
from choretally.domain.period_result import PeriodResult, PeriodStatus
from choretally.domain.task import (
    CustomDates,
    Daily,
    HabitType,
    Monthly,
    OneTime,
    Recurrence,
    RecurrenceKind,
    Task,
    TimePeriod,
    Weekdays,
    Weekly,
)


__all__ = [
    "Completion",
    "CompletionStatus",
    "CustomDates",
    "Daily",
    "HabitType",
    "Monthly",
    "OneTime",
    "PeriodResult",
    "PeriodStatus",
    "Recurrence",
    "RecurrenceKind",
    "Task",
    "TimePeriod",
    "Weekdays",
    "Weekly",
]
