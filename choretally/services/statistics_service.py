"""Statistics service for household weekly and monthly snapshots.

Snapshots are calculated from finalized period results and stored so past
weeks and months can be browsed without recomputation. Recalculating a
period replaces the stored snapshot.
"""

import logging
from collections import defaultdict
from datetime import UTC, date, datetime, timedelta

from choretally.core import recurrence
from choretally.core.config import settings
from choretally.core.db_client import DBClient, sanitize_param
from choretally.core.logging import span
from choretally.domain.task import Task
from choretally.models.service_models import (
    MemberStatistics,
    MonthlyStatisticsResponse,
    TaskBreakdown,
    WeeklyStatisticsResponse,
)
from choretally.services.analytics_service import compute_success
from choretally.services.period_result_service import PeriodResultStore


logger = logging.getLogger(__name__)


def _snapshot_rate(*, completed: int, expected: int) -> float:
    """Stored snapshots report 0.0 rather than None when nothing was expected."""
    if expected <= 0:
        return 0.0
    return completed / expected * 100


def month_key(day: date) -> str:
    """Return the ``YYYY-MM`` key for ``day``'s month."""
    return day.strftime("%Y-%m")


def month_bounds(month: str) -> tuple[date, date]:
    """Return the first and last day of a ``YYYY-MM`` month key."""
    start = date.fromisoformat(f"{month}-01")
    return start, recurrence.last_day_of_month(start)


class StatisticsService:
    """Calculates and stores per-member completion snapshots."""

    def __init__(self, db: DBClient, period_results: PeriodResultStore | None = None) -> None:
        self._db = db
        self._period_results = period_results or PeriodResultStore(db)

    async def _member_breakdowns(
        self, *, tasks: list[Task], start: date, end: date
    ) -> dict[str, list[TaskBreakdown]]:
        """Group per-task results in [start, end] by assigned member."""
        breakdowns: dict[str, list[TaskBreakdown]] = defaultdict(list)
        for task in tasks:
            if task.archived or task.assigned_user_id is None:
                continue

            member_lines = breakdowns[task.assigned_user_id]
            counts = await self._period_results.count_period_results(task_id=task.id, start=start, end=end)
            # Snapshots count every finalized period, skipped included
            expected = counts.completed + counts.failed + counts.skipped
            if expected == 0:
                continue

            successful = compute_success(habit_type=task.habit_type, expected=expected, completed=counts.completed)
            member_lines.append(
                TaskBreakdown(
                    task_id=task.id,
                    task_title=task.title,
                    expected=expected,
                    completed=successful,
                    completion_rate=_snapshot_rate(completed=successful, expected=expected),
                )
            )
        return breakdowns

    async def _store_snapshot(
        self,
        *,
        collection: str,
        key_fields: dict[str, str],
        extra_fields: dict[str, str],
        user_id: str,
        breakdown: list[TaskBreakdown],
    ) -> None:
        """Upsert a member row and replace its task breakdown rows."""
        total_expected = sum(b.expected for b in breakdown)
        total_completed = sum(b.completed for b in breakdown)
        data = {
            "total_expected": total_expected,
            "total_completed": total_completed,
            "completion_rate": _snapshot_rate(completed=total_completed, expected=total_expected),
            "calculated_at": datetime.now(UTC),
            **extra_fields,
        }

        key_query = " && ".join(f'{k} = "{sanitize_param(v)}"' for k, v in {**key_fields, "user_id": user_id}.items())
        child_collection = f"{collection}_tasks"
        parent_field = f"{collection}_id"

        async with self._db.transaction():
            existing = await self._db.get_first_record(collection=collection, filter_query=key_query)
            if existing is not None:
                parent = await self._db.update_record(collection=collection, record_id=existing["id"], data=data)
                await self._db.delete_records(
                    collection=child_collection, filter_query=f'{parent_field} = "{parent["id"]}"'
                )
            else:
                parent = await self._db.create_record(
                    collection=collection, data={**key_fields, "user_id": user_id, **data}
                )

            for line in breakdown:
                await self._db.create_record(
                    collection=child_collection, data={parent_field: parent["id"], **line.model_dump()}
                )

    async def calculate_weekly_statistics(self, *, household_id: str, week_start: date, tasks: list[Task]) -> int:
        """Calculate and store weekly statistics for every assigned member.

        Args:
            household_id: Household to calculate for
            week_start: First day of the week
            tasks: The household's tasks

        Returns:
            Number of member snapshots written
        """
        with span("statistics_service.calculate_weekly_statistics"):
            week_end = recurrence.week_end(week_start)
            breakdowns = await self._member_breakdowns(tasks=tasks, start=week_start, end=week_end)

            for user_id, breakdown in breakdowns.items():
                await self._store_snapshot(
                    collection="weekly_statistics",
                    key_fields={"household_id": household_id, "week_start": week_start.isoformat()},
                    extra_fields={"week_end": week_end.isoformat()},
                    user_id=user_id,
                    breakdown=breakdown,
                )

            logger.info(
                "Calculated weekly statistics",
                extra={"household_id": household_id, "week_start": week_start.isoformat(), "members": len(breakdowns)},
            )
            return len(breakdowns)

    async def calculate_monthly_statistics(self, *, household_id: str, month: str, tasks: list[Task]) -> int:
        """Calculate and store monthly statistics (``month`` as ``YYYY-MM``)."""
        with span("statistics_service.calculate_monthly_statistics"):
            start, end = month_bounds(month)
            breakdowns = await self._member_breakdowns(tasks=tasks, start=start, end=end)

            for user_id, breakdown in breakdowns.items():
                await self._store_snapshot(
                    collection="monthly_statistics",
                    key_fields={"household_id": household_id, "month": month},
                    extra_fields={},
                    user_id=user_id,
                    breakdown=breakdown,
                )

            logger.info(
                "Calculated monthly statistics",
                extra={"household_id": household_id, "month": month, "members": len(breakdowns)},
            )
            return len(breakdowns)

    async def _load_members(self, *, collection: str, key_query: str) -> list[MemberStatistics]:
        rows = await self._db.list_all_records(
            collection=collection,
            filter_query=key_query,
            sort="completion_rate DESC, user_id ASC",
        )

        members = []
        for row in rows:
            lines = await self._db.list_all_records(
                collection=f"{collection}_tasks",
                filter_query=f'{collection}_id = "{row["id"]}"',
                sort="task_title ASC",
            )
            members.append(
                MemberStatistics(
                    user_id=row["user_id"],
                    total_expected=row["total_expected"],
                    total_completed=row["total_completed"],
                    completion_rate=row["completion_rate"],
                    calculated_at=row["calculated_at"],
                    task_breakdown=[TaskBreakdown(**line) for line in lines],
                )
            )
        return members

    async def get_weekly_statistics(self, *, household_id: str, week_start: date) -> WeeklyStatisticsResponse:
        """Return stored weekly statistics, best completion rate first."""
        members = await self._load_members(
            collection="weekly_statistics",
            key_query=f'household_id = "{sanitize_param(household_id)}" && week_start = "{week_start.isoformat()}"',
        )
        return WeeklyStatisticsResponse(
            household_id=household_id,
            week_start=week_start,
            week_end=recurrence.week_end(week_start),
            members=members,
        )

    async def get_monthly_statistics(self, *, household_id: str, month: str) -> MonthlyStatisticsResponse:
        """Return stored monthly statistics, best completion rate first."""
        members = await self._load_members(
            collection="monthly_statistics",
            key_query=f'household_id = "{sanitize_param(household_id)}" && month = "{sanitize_param(month)}"',
        )
        return MonthlyStatisticsResponse(household_id=household_id, month=month, members=members)

    async def _distinct_values(self, *, collection: str, field: str, household_id: str) -> list[str]:
        rows = await self._db.list_all_records(
            collection=collection,
            filter_query=f'household_id = "{sanitize_param(household_id)}"',
            sort=f"{field} DESC",
        )
        return list(dict.fromkeys(row[field] for row in rows))

    async def list_available_weeks(self, *, household_id: str) -> list[date]:
        """List weeks with stored statistics, newest first."""
        values = await self._distinct_values(collection="weekly_statistics", field="week_start", household_id=household_id)
        return [date.fromisoformat(v) for v in values]

    async def list_available_months(self, *, household_id: str) -> list[str]:
        """List months (``YYYY-MM``) with stored statistics, newest first."""
        return await self._distinct_values(collection="monthly_statistics", field="month", household_id=household_id)

    async def calculate_previous_week(self, *, household_id: str, today: date, tasks: list[Task]) -> date:
        """Calculate statistics for the last full week before ``today``.

        Returns:
            The start of the week that was calculated
        """
        current_start = recurrence.week_start(today, settings.week_start_day)
        previous_start = current_start - timedelta(days=recurrence.DAYS_PER_WEEK)
        await self.calculate_weekly_statistics(household_id=household_id, week_start=previous_start, tasks=tasks)
        return previous_start
