"""Period finalizer: records outcomes for periods that ended without reaching target.

The completion ledger finalizes a period as soon as its target is met. Periods
that end short of target (or while a task is paused) are finalized here, on
the day after they end.
"""

import logging
from datetime import date, timedelta

from choretally.core import recurrence
from choretally.core.config import constants
from choretally.core.logging import span
from choretally.domain.period_result import PeriodStatus
from choretally.domain.task import HabitType, Task
from choretally.models.service_models import FinalizationReport
from choretally.services.completion_service import CompletionLedger
from choretally.services.consequence_dispatcher import ConsequenceDispatcher, NullDispatcher, dispatch_safely
from choretally.services.period_result_service import PeriodResultStore


logger = logging.getLogger(__name__)


def _had_occurrence(task: Task, start: date, end: date) -> bool:
    """Check whether the task came due at least once in [start, end]."""
    first = recurrence.next_due_date(task, start)
    return first is not None and first <= end


class PeriodFinalizer:
    """Finalizes lapsed periods for a batch of tasks."""

    def __init__(
        self,
        ledger: CompletionLedger,
        period_results: PeriodResultStore,
        *,
        dispatcher: ConsequenceDispatcher | None = None,
    ) -> None:
        self._ledger = ledger
        self._period_results = period_results
        self._dispatcher = dispatcher or NullDispatcher()

    async def finalize_task(self, *, task: Task, today: date) -> PeriodStatus | None:
        """Finalize the period of ``task`` that ended yesterday, if any.

        Returns:
            The status written, or None when nothing needed finalizing
        """
        if task.is_one_time or task.archived or task.target_count == 0:
            return None

        yesterday = today - timedelta(days=1)
        start, end = recurrence.period_bounds(task, yesterday)
        if end != yesterday or not _had_occurrence(task, start, end):
            return None

        if await self._period_results.is_period_finalized(task_id=task.id, period_start=start):
            return None

        count = await self._ledger.count_completions_in_period(task=task, start=start, end=end)
        if task.paused:
            status = PeriodStatus.SKIPPED
        elif count >= task.target_count:
            status = PeriodStatus.COMPLETED
        else:
            status = PeriodStatus.FAILED

        await self._period_results.finalize_period(
            task_id=task.id,
            period_start=start,
            period_end=end,
            status=status,
            completions_count=count,
            target_count=task.target_count,
            finalized_by=constants.SYSTEM_ACTOR,
            notes="Task paused" if status == PeriodStatus.SKIPPED else None,
        )

        # A failed bad-habit period means the habit was avoided
        if status == PeriodStatus.FAILED and task.habit_type == HabitType.GOOD:
            await dispatch_safely(
                "on_period_failed",
                self._dispatcher.on_period_failed(task, task.household_id, start),
                task_id=task.id,
                user_id=task.assigned_user_id,
            )
        return status

    async def finalize_lapsed_periods(self, *, tasks: list[Task], today: date) -> FinalizationReport:
        """Finalize every lapsed, unfinalized period across ``tasks``.

        A failure on one task is logged and does not stop the others.

        Args:
            tasks: Tasks to check
            today: The run date; periods that ended yesterday are finalized

        Returns:
            FinalizationReport with per-status counts
        """
        with span("period_finalizer.finalize_lapsed_periods"):
            report = FinalizationReport(run_date=today)
            for task in tasks:
                report.tasks_checked += 1
                try:
                    status = await self.finalize_task(task=task, today=today)
                except Exception:
                    logger.exception("Failed to finalize period", extra={"task_id": task.id})
                    continue

                if status is None:
                    continue
                report.periods_finalized += 1
                match status:
                    case PeriodStatus.COMPLETED:
                        report.completed += 1
                    case PeriodStatus.FAILED:
                        report.failed += 1
                    case PeriodStatus.SKIPPED:
                        report.skipped += 1

            logger.info(
                "Period finalization complete: checked %d tasks, finalized %d periods",
                report.tasks_checked,
                report.periods_finalized,
            )
            return report
