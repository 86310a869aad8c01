"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from choretally.domain.period_result import PeriodStatus


class PeriodCounts(BaseModel):
    """Finalized period counts by status within a date range."""

    completed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def expected(self) -> int:
        """Periods that count toward a completion rate (skipped excluded)."""
        return self.completed + self.failed


class CompletionRateWindow(BaseModel):
    """Completion rate over one window, already inverted for bad habits."""

    start: date
    end: date
    expected: int
    completed: int
    successful: int
    skipped: int
    rate: float | None = Field(default=None, description="Percentage 0-100, None when nothing was expected")


class PeriodDisplay(BaseModel):
    """One period in a habit tracker's recent-history strip."""

    period_start: date
    status: PeriodStatus


class TaskStatistics(BaseModel):
    """Comprehensive statistics for one task and user."""

    task_id: str
    user_id: str
    completion_rate_week: float | None
    completion_rate_month: float | None
    completion_rate_all_time: float | None
    periods_completed_week: int
    periods_total_week: int
    periods_skipped_week: int
    periods_completed_month: int
    periods_total_month: int
    periods_skipped_month: int
    periods_completed_all_time: int
    periods_total_all_time: int
    periods_skipped_all_time: int
    current_streak: int
    best_streak: int
    total_completions: int
    last_completed: datetime | None = None
    next_due: date | None = None
    recent_periods: list[PeriodDisplay] = Field(default_factory=list)


class TaskBreakdown(BaseModel):
    """Per-task line in a member's weekly or monthly statistics."""

    task_id: str
    task_title: str
    expected: int
    completed: int
    completion_rate: float


class MemberStatistics(BaseModel):
    """One member's totals for a statistics period."""

    user_id: str
    total_expected: int
    total_completed: int
    completion_rate: float
    calculated_at: datetime
    task_breakdown: list[TaskBreakdown] = Field(default_factory=list)


class WeeklyStatisticsResponse(BaseModel):
    """Household statistics for one week."""

    household_id: str
    week_start: date
    week_end: date
    members: list[MemberStatistics] = Field(default_factory=list)


class MonthlyStatisticsResponse(BaseModel):
    """Household statistics for one month (``YYYY-MM``)."""

    household_id: str
    month: str
    members: list[MemberStatistics] = Field(default_factory=list)


class FinalizationReport(BaseModel):
    """Summary of one period-finalizer run."""

    run_date: date
    tasks_checked: int = 0
    periods_finalized: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
