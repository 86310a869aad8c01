"""Period result service: one finalized outcome per task period.

Key Concepts:
- A period is identified by (task_id, period_start). Finalizing the same
  period again replaces the stored row in place, so the latest call wins.
- Skipped periods are stored but excluded from completion rates.
"""

import logging
from datetime import UTC, date, datetime

from choretally.core.config import constants
from choretally.core.db_client import DBClient, sanitize_param
from choretally.core.errors import PeriodResultNotFoundError
from choretally.core.logging import log_event, span
from choretally.domain.period_result import PeriodResult, PeriodStatus
from choretally.models.service_models import PeriodCounts, PeriodDisplay


logger = logging.getLogger(__name__)

COLLECTION = "task_period_results"


def _key_filter(task_id: str, period_start: date) -> str:
    return f'task_id = "{sanitize_param(task_id)}" && period_start = "{period_start.isoformat()}"'


def _range_filter(task_id: str, start: date, end: date) -> str:
    return (
        f'task_id = "{sanitize_param(task_id)}" && '
        f'period_start >= "{start.isoformat()}" && period_start <= "{end.isoformat()}"'
    )


class PeriodResultStore:
    """Durable store of finalized period outcomes."""

    def __init__(self, db: DBClient) -> None:
        self._db = db

    async def finalize_period(
        self,
        *,
        task_id: str,
        period_start: date,
        period_end: date,
        status: PeriodStatus,
        completions_count: int,
        target_count: int,
        finalized_by: str = constants.SYSTEM_ACTOR,
        notes: str | None = None,
    ) -> PeriodResult:
        """Record the outcome of a period, replacing any earlier result for it.

        Args:
            task_id: Task the period belongs to
            period_start: First day of the period (part of the unique key)
            period_end: Last day of the period
            status: completed, failed or skipped
            completions_count: Completions counted in the period
            target_count: Target snapshot at finalization time
            finalized_by: Acting user ID, or "system" for automatic runs
            notes: Optional free-text note

        Returns:
            The stored PeriodResult

        Raises:
            DatabaseError: If the write fails
        """
        with span("period_result_service.finalize_period"):
            data = {
                "period_end": period_end,
                "status": status,
                "completions_count": completions_count,
                "target_count": target_count,
                "finalized_at": datetime.now(UTC),
                "finalized_by": finalized_by,
                "notes": notes,
            }

            async with self._db.transaction():
                existing = await self._db.get_first_record(
                    collection=COLLECTION, filter_query=_key_filter(task_id, period_start)
                )
                if existing is not None:
                    record = await self._db.update_record(collection=COLLECTION, record_id=existing["id"], data=data)
                else:
                    record = await self._db.create_record(
                        collection=COLLECTION,
                        data={"task_id": task_id, "period_start": period_start, **data},
                    )

            log_event(
                logger,
                "info",
                "Period finalized",
                task_id=task_id,
                period_start=period_start.isoformat(),
                status=str(status),
                replaced=existing is not None,
            )
            return PeriodResult(**record)

    async def get_period_result(self, *, task_id: str, period_start: date) -> PeriodResult | None:
        """Return the stored result for a period, or None if it was never finalized."""
        record = await self._db.get_first_record(collection=COLLECTION, filter_query=_key_filter(task_id, period_start))
        return PeriodResult(**record) if record else None

    async def is_period_finalized(self, *, task_id: str, period_start: date) -> bool:
        """Check whether a result exists for (task_id, period_start)."""
        count = await self._db.count_records(collection=COLLECTION, filter_query=_key_filter(task_id, period_start))
        return count > 0

    async def count_period_results(self, *, task_id: str, start: date, end: date) -> PeriodCounts:
        """Count finalized periods by status whose start falls within [start, end].

        A range with no results yields zero counts.
        """
        with span("period_result_service.count_period_results"):
            base = _range_filter(task_id, start, end)
            counts = {}
            for status in PeriodStatus:
                counts[status.value] = await self._db.count_records(
                    collection=COLLECTION, filter_query=f'{base} && status = "{status.value}"'
                )
            return PeriodCounts(**counts)

    async def get_period_results_for_task(
        self,
        *,
        task_id: str,
        start: date = constants.ALL_TIME_START,
        end: date = constants.ALL_TIME_END,
    ) -> list[PeriodResult]:
        """List a task's period results in a range, newest first."""
        records = await self._db.list_all_records(
            collection=COLLECTION,
            filter_query=_range_filter(task_id, start, end),
            sort="period_start DESC",
        )
        return [PeriodResult(**r) for r in records]

    async def get_recent_periods(
        self,
        *,
        task_id: str,
        limit: int = constants.RECENT_PERIODS_LIMIT,
    ) -> list[PeriodDisplay]:
        """Return the most recent finalized periods, oldest first, for display."""
        records = await self._db.list_records(
            collection=COLLECTION,
            filter_query=f'task_id = "{sanitize_param(task_id)}"',
            sort="period_start DESC",
            per_page=limit,
        )
        return [PeriodDisplay(period_start=r["period_start"], status=r["status"]) for r in reversed(records)]

    async def update_period_status(
        self,
        *,
        task_id: str,
        period_start: date,
        status: PeriodStatus,
        updated_by: str,
        notes: str | None = None,
    ) -> PeriodResult:
        """Correct the status of an already-finalized period.

        Raises:
            PeriodResultNotFoundError: If the period was never finalized
        """
        with span("period_result_service.update_period_status"):
            async with self._db.transaction():
                existing = await self.get_period_result(task_id=task_id, period_start=period_start)
                if existing is None:
                    msg = f"No period result for task {task_id} starting {period_start.isoformat()}"
                    raise PeriodResultNotFoundError(msg)

                record = await self._db.update_record(
                    collection=COLLECTION,
                    record_id=existing.id,
                    data={
                        "status": status,
                        "finalized_at": datetime.now(UTC),
                        "finalized_by": updated_by,
                        "notes": notes,
                    },
                )
            logger.info(
                "Period status corrected",
                extra={"task_id": task_id, "period_start": period_start.isoformat(), "status": str(status)},
            )
            return PeriodResult(**record)

    async def delete_period_result(self, *, task_id: str, period_start: date) -> bool:
        """Delete a period's result if present. Returns True when a row was removed."""
        removed = await self._db.delete_records(collection=COLLECTION, filter_query=_key_filter(task_id, period_start))
        if removed:
            logger.info(
                "Period result deleted", extra={"task_id": task_id, "period_start": period_start.isoformat()}
            )
        return removed > 0
