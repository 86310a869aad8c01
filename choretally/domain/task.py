"""Task domain models and enums."""

from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from choretally.core.config import Constants


class RecurrenceKind(StrEnum):
    """How often a task comes due."""

    ONETIME = "onetime"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    WEEKDAYS = "weekdays"
    CUSTOM = "custom"


class TimePeriod(StrEnum):
    """Counting window for tasks with a per-period target."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    NONE = "none"


class HabitType(StrEnum):
    """Whether performing the task is the desired behavior."""

    GOOD = "good"
    BAD = "bad"  # Success means NOT doing it


class OneTime(BaseModel):
    """Single occurrence, never rescheduled."""

    kind: Literal["onetime"] = "onetime"


class Daily(BaseModel):
    """Due every day."""

    kind: Literal["daily"] = "daily"


class Weekly(BaseModel):
    """Due once a week on one weekday."""

    kind: Literal["weekly"] = "weekly"
    weekday: int | None = Field(
        default=None,
        ge=0,
        le=6,
        description="Weekday (0=Sunday, 6=Saturday); defaults to the task's creation weekday",
    )


class Monthly(BaseModel):
    """Due once a month on one day-of-month."""

    kind: Literal["monthly"] = "monthly"
    day: int | None = Field(
        default=None,
        ge=1,
        le=31,
        description="Day of month, clamped to the month's last day; defaults to the creation day",
    )


class Weekdays(BaseModel):
    """Due on a fixed set of weekdays."""

    kind: Literal["weekdays"] = "weekdays"
    days: list[int] = Field(
        default_factory=lambda: list(Constants.DEFAULT_WEEKDAYS),
        description="Weekdays (0=Sunday, 6=Saturday); defaults to Monday-Friday",
    )

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):  # noqa: PLR2004
            msg = "weekday numbers must be between 0 (Sunday) and 6 (Saturday)"
            raise ValueError(msg)
        return sorted(set(value))


class CustomDates(BaseModel):
    """Due on an explicit list of dates."""

    kind: Literal["custom"] = "custom"
    dates: list[date] = Field(default_factory=list, description="Explicit due dates")

    @field_validator("dates")
    @classmethod
    def _sort_dates(cls, value: list[date]) -> list[date]:
        return sorted(set(value))


Recurrence = Annotated[
    OneTime | Daily | Weekly | Monthly | Weekdays | CustomDates,
    Field(discriminator="kind"),
]


class Task(BaseModel):
    """Task data transfer object.

    Tasks are owned by the task-management collaborator; the engine only
    reads them.
    """

    id: str = Field(..., description="Unique task ID")
    household_id: str = Field(..., description="Owning household ID")
    title: str = Field(..., description="Task title")
    recurrence: Recurrence = Field(default_factory=Daily, description="Recurrence rule")
    target_count: int = Field(default=1, ge=0, description="Completions required per period (0 = free-form)")
    time_period: TimePeriod | None = Field(
        default=None,
        description="Explicit counting period; inferred from the recurrence when unset",
    )
    allow_exceed_target: bool = Field(default=False, description="Allow completions beyond the target")
    requires_review: bool = Field(default=False, description="Completions start pending until approved")
    habit_type: HabitType = Field(default=HabitType.GOOD, description="good or bad habit")
    assigned_user_id: str | None = Field(default=None, description="Assigned user ID (None = anyone)")
    paused: bool = Field(default=False, description="Lapsed periods are recorded as skipped while paused")
    archived: bool = Field(default=False, description="Archived tasks are excluded from household statistics")
    created_at: datetime = Field(..., description="Creation timestamp (anchor for weekly/monthly defaults)")

    @property
    def kind(self) -> RecurrenceKind:
        """Shortcut for ``recurrence.kind``."""
        return RecurrenceKind(self.recurrence.kind)

    @property
    def is_one_time(self) -> bool:
        """True for tasks that never recur."""
        return self.recurrence.kind == RecurrenceKind.ONETIME
