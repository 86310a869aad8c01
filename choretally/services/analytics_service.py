"""Analytics service for streaks and completion rates.

This module provides functions for:
- Current and best streaks per task and user, derived from completion due dates
- Week/month/all-time completion rates, derived from finalized period results
- A combined TaskStatistics view for task detail screens

Key Concepts:
- Streaks: consecutive occurrences (or satisfied periods) credited to a user.
  The current streak walks backwards from the next occurrence; the best streak
  scans the whole history.
- Habit inversion: for bad-habit tasks success means the period was NOT
  completed, so successful = expected - completed.
- Skipped periods are excluded from the rate denominator. A window with
  nothing expected has no rate (None), not 0%.
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta

from choretally.core import recurrence
from choretally.core.config import constants
from choretally.core.db_client import DBClient, sanitize_param
from choretally.core.logging import span
from choretally.domain.task import HabitType, Task
from choretally.models.service_models import CompletionRateWindow, TaskStatistics
from choretally.services.period_result_service import PeriodResultStore


logger = logging.getLogger(__name__)

COMPLETIONS = "task_completions"


def compute_success(*, habit_type: HabitType, expected: int, completed: int) -> int:
    """Return the number of successful periods, inverting for bad habits."""
    if habit_type == HabitType.BAD:
        return expected - completed
    return completed


def compute_rate(*, successful: int, expected: int) -> float | None:
    """Return successful/expected as a percentage, or None when nothing was expected."""
    if expected <= 0:
        return None
    return successful / expected * 100


class AnalyticsService:
    """Streak and completion-rate aggregation for tasks."""

    def __init__(self, db: DBClient, period_results: PeriodResultStore | None = None) -> None:
        self._db = db
        self._period_results = period_results or PeriodResultStore(db)

    def _user_filter(self, task_id: str, user_id: str) -> str:
        return f'task_id = "{sanitize_param(task_id)}" && user_id = "{sanitize_param(user_id)}"'

    async def _due_dates(self, task_id: str, user_id: str) -> list[date]:
        """Return the due dates of every completion by the user, one per completion."""
        records = await self._db.list_all_records(
            collection=COMPLETIONS,
            filter_query=self._user_filter(task_id, user_id),
            sort="due_date DESC",
        )
        return [date.fromisoformat(r["due_date"]) for r in records]

    async def count_user_completions(self, *, task_id: str, user_id: str) -> int:
        """Count all of a user's completions of a task, regardless of status."""
        return await self._db.count_records(collection=COMPLETIONS, filter_query=self._user_filter(task_id, user_id))

    async def current_streak(self, *, task: Task, user_id: str, today: date) -> int:
        """Calculate the user's current streak for a task.

        One-time tasks report 0 when free-form, otherwise the all-time
        completion count. Scheduled tasks walk backwards from the next
        occurrence, one matched due date per step, and stop at the first gap.
        A completion credited one day before the first expected date still
        starts the streak.

        Args:
            task: Task to evaluate
            user_id: User whose completions count
            today: Reference date

        Returns:
            Number of consecutive occurrences ending at the next due date
        """
        with span("analytics_service.current_streak"):
            if task.is_one_time:
                if task.target_count == 0:
                    return 0
                return await self.count_user_completions(task_id=task.id, user_id=user_id)

            due_dates = sorted(set(await self._due_dates(task.id, user_id)), reverse=True)
            if not due_dates:
                return 0

            expected = recurrence.next_due_date(task, today) or today
            streak = 0
            for due in due_dates:
                if due > expected:
                    continue
                if due == expected or (streak == 0 and due == expected - timedelta(days=1)):
                    streak += 1
                    expected = recurrence.previous_due_date(task, due)
                else:
                    break

            return streak

    async def best_streak(self, *, task: Task, user_id: str) -> int:
        """Calculate the longest streak the user ever reached on a task.

        A due date qualifies when the user's completions in its period reach
        the target (at least one). Consecutive qualifying dates chain when the
        next occurrence after one is the other.
        """
        with span("analytics_service.best_streak"):
            if task.is_one_time:
                return await self.count_user_completions(task_id=task.id, user_id=user_id)

            all_due = await self._due_dates(task.id, user_id)
            if not all_due:
                return 0

            required = max(task.target_count, 1)
            per_period: Counter[date] = Counter(recurrence.period_bounds(task, d)[0] for d in all_due)

            best = 0
            run = 0
            previous: date | None = None
            for due in sorted(set(all_due)):
                if per_period[recurrence.period_bounds(task, due)[0]] < required:
                    run = 0
                    previous = None
                    continue

                if previous is not None and recurrence.next_due_date(task, previous + timedelta(days=1)) == due:
                    run += 1
                else:
                    run = 1
                best = max(best, run)
                previous = due

            return best

    async def completion_rate(self, *, task: Task, start: date, end: date) -> CompletionRateWindow:
        """Completion rate over finalized periods whose start lies in [start, end]."""
        with span("analytics_service.completion_rate"):
            counts = await self._period_results.count_period_results(task_id=task.id, start=start, end=end)
            expected = counts.expected
            successful = compute_success(habit_type=task.habit_type, expected=expected, completed=counts.completed)
            return CompletionRateWindow(
                start=start,
                end=end,
                expected=expected,
                completed=counts.completed,
                successful=successful,
                skipped=counts.skipped,
                rate=compute_rate(successful=successful, expected=expected),
            )

    async def get_last_completed(self, *, task_id: str, user_id: str) -> datetime | None:
        """Return when the user last completed the task."""
        record = await self._db.get_first_record(
            collection=COMPLETIONS, filter_query=self._user_filter(task_id, user_id), sort="completed_at DESC"
        )
        return datetime.fromisoformat(record["completed_at"]) if record else None

    async def get_task_statistics(self, *, task: Task, user_id: str, today: date) -> TaskStatistics:
        """Build the full statistics view for one task and user.

        Args:
            task: Task to summarize
            user_id: User whose streaks and completions count
            today: Reference date for the week/month windows and streaks

        Returns:
            TaskStatistics with rates, period counts, streaks and recent periods
        """
        with span("analytics_service.get_task_statistics"):
            week_start = recurrence.week_start(today)
            week = await self.completion_rate(task=task, start=week_start, end=recurrence.week_end(week_start))
            month = await self.completion_rate(
                task=task, start=recurrence.month_start(today), end=recurrence.last_day_of_month(today)
            )
            all_time = await self.completion_rate(
                task=task, start=constants.ALL_TIME_START, end=constants.ALL_TIME_END
            )
            stats = TaskStatistics(
                task_id=task.id,
                user_id=user_id,
                completion_rate_week=week.rate,
                completion_rate_month=month.rate,
                completion_rate_all_time=all_time.rate,
                periods_completed_week=week.completed,
                periods_total_week=week.expected,
                periods_skipped_week=week.skipped,
                periods_completed_month=month.completed,
                periods_total_month=month.expected,
                periods_skipped_month=month.skipped,
                periods_completed_all_time=all_time.completed,
                periods_total_all_time=all_time.expected,
                periods_skipped_all_time=all_time.skipped,
                current_streak=await self.current_streak(task=task, user_id=user_id, today=today),
                best_streak=await self.best_streak(task=task, user_id=user_id),
                total_completions=await self.count_user_completions(task_id=task.id, user_id=user_id),
                last_completed=await self.get_last_completed(task_id=task.id, user_id=user_id),
                next_due=recurrence.next_due_date(task, today),
                recent_periods=await self._period_results.get_recent_periods(task_id=task.id),
            )

            logger.info(
                "Computed task statistics",
                extra={"task_id": task.id, "user_id": user_id, "current_streak": stats.current_streak},
            )
            return stats
