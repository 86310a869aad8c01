"""Completion service: records completions and drives period finalization.

Key Concepts:
- Target policy: a task may be completed ``target_count`` times per period
  (all time for one-time tasks). Further attempts fail with
  AlreadyCompletedError unless ``allow_exceed_target`` is set.
- Crediting: a scheduled task's completion is credited to its next due date,
  so the counting period is the one containing that date.
- Review: tasks with ``requires_review`` record completions as pending. A
  reviewer approves (status flip) or rejects (delete and reverse).
- Finalization: once a period's completions reach the target, the period is
  finalized as completed. Undoing or rejecting below target deletes that
  result so the period can be re-evaluated later.
"""

import logging
from datetime import UTC, date, datetime

from choretally.core import recurrence
from choretally.core.config import constants
from choretally.core.db_client import DBClient, RecordNotFoundError, sanitize_param
from choretally.core.errors import (
    AlreadyCompletedError,
    CompletionNotFoundError,
    NotAssignedError,
    NotCompletedError,
    NotDueTodayError,
)
from choretally.core.logging import log_event, span
from choretally.domain.completion import Completion, CompletionStatus
from choretally.domain.period_result import PeriodStatus
from choretally.domain.task import CustomDates, HabitType, Task
from choretally.services.analytics_service import AnalyticsService
from choretally.services.consequence_dispatcher import ConsequenceDispatcher, NullDispatcher, dispatch_safely
from choretally.services.period_result_service import PeriodResultStore


logger = logging.getLogger(__name__)

COLLECTION = "task_completions"


def _period_filter(task_id: str, start: date, end: date, *, user_id: str | None = None) -> str:
    query = f'task_id = "{sanitize_param(task_id)}"'
    if user_id is not None:
        query += f' && user_id = "{sanitize_param(user_id)}"'
    return f'{query} && due_date >= "{start.isoformat()}" && due_date <= "{end.isoformat()}"'


def current_period(task: Task, today: date) -> tuple[date, date]:
    """Return the counting period a completion made on ``today`` is credited to."""
    anchor = recurrence.next_due_date(task, today) or today
    return recurrence.period_bounds(task, anchor)


class CompletionLedger:
    """Records completion events and enforces target and review policy."""

    def __init__(
        self,
        db: DBClient,
        *,
        dispatcher: ConsequenceDispatcher | None = None,
        period_results: PeriodResultStore | None = None,
        analytics: AnalyticsService | None = None,
    ) -> None:
        self._db = db
        self._dispatcher = dispatcher or NullDispatcher()
        self._period_results = period_results or PeriodResultStore(db)
        self._analytics = analytics or AnalyticsService(db, self._period_results)

    async def count_completions_in_period(
        self,
        *,
        task: Task,
        start: date,
        end: date,
        user_id: str | None = None,
    ) -> int:
        """Count completions credited to [start, end], optionally for one user only."""
        return await self._db.count_records(
            collection=COLLECTION, filter_query=_period_filter(task.id, start, end, user_id=user_id)
        )

    async def complete(self, *, task: Task, user_id: str, today: date) -> Completion:
        """Record a completion of ``task`` by ``user_id``.

        Args:
            task: Task being completed
            user_id: Completing user
            today: The user's current calendar date

        Returns:
            The recorded Completion (pending when the task requires review)

        Raises:
            NotAssignedError: If the task is assigned to another user
            AlreadyCompletedError: If the target is met and exceeding is disallowed
            NotDueTodayError: If a custom-date task has no remaining dates
            DatabaseError: If the write fails
        """
        with span("completion_service.complete"):
            if task.assigned_user_id is not None and task.assigned_user_id != user_id:
                msg = f"Task {task.id} is assigned to another user"
                raise NotAssignedError(msg)

            async with self._db.transaction():
                due_date = await self._check_can_complete(task=task, user_id=user_id, today=today)

                status = CompletionStatus.PENDING if task.requires_review else CompletionStatus.APPROVED
                record = await self._db.create_record(
                    collection=COLLECTION,
                    data={
                        "task_id": task.id,
                        "user_id": user_id,
                        "household_id": task.household_id,
                        "completed_at": datetime.now(UTC),
                        "due_date": due_date,
                        "status": status,
                    },
                )
            completion = Completion(**record)

            log_event(
                logger,
                "info",
                "Completion recorded",
                user_id=user_id,
                task_id=task.id,
                due_date=due_date.isoformat(),
                status=str(status),
            )

            if task.habit_type == HabitType.GOOD:
                streak = await self._analytics.current_streak(task=task, user_id=user_id, today=today)
                await dispatch_safely(
                    "on_good_completion",
                    self._dispatcher.on_good_completion(task, user_id, task.household_id, streak),
                    task_id=task.id,
                    user_id=user_id,
                )
            else:
                await dispatch_safely(
                    "on_bad_completion",
                    self._dispatcher.on_bad_completion(task, user_id, task.household_id),
                    task_id=task.id,
                    user_id=user_id,
                )

            if not task.is_one_time and task.target_count > 0:
                await self._finalize_if_target_met(task=task, anchor=due_date, actor=user_id)

            return completion

    async def _check_can_complete(self, *, task: Task, user_id: str, today: date) -> date:
        """Apply the target policy and return the due date to credit."""
        if task.is_one_time:
            if task.target_count > 0 and not task.allow_exceed_target:
                total = await self._analytics.count_user_completions(task_id=task.id, user_id=user_id)
                if total >= task.target_count:
                    msg = f"Task {task.id} already completed {total} of {task.target_count} times"
                    raise AlreadyCompletedError(msg)
            return today

        next_due = recurrence.next_due_date(task, today)
        if next_due is None and isinstance(task.recurrence, CustomDates):
            msg = f"Task {task.id} has no remaining due dates"
            raise NotDueTodayError(msg)

        anchor = next_due or today
        if task.target_count > 0 and not task.allow_exceed_target:
            start, end = recurrence.period_bounds(task, anchor)
            existing = await self.count_completions_in_period(task=task, start=start, end=end, user_id=user_id)
            if existing >= task.target_count:
                msg = f"Task {task.id} already completed for the period {start.isoformat()}..{end.isoformat()}"
                raise AlreadyCompletedError(msg)

        return anchor

    async def _finalize_if_target_met(self, *, task: Task, anchor: date, actor: str) -> None:
        start, end = recurrence.period_bounds(task, anchor)
        count = await self.count_completions_in_period(task=task, start=start, end=end)
        if count >= task.target_count:
            await self._period_results.finalize_period(
                task_id=task.id,
                period_start=start,
                period_end=end,
                status=PeriodStatus.COMPLETED,
                completions_count=count,
                target_count=task.target_count,
                finalized_by=actor,
            )

    async def _reevaluate_period(self, *, task: Task, anchor: date) -> None:
        """Drop a completed result whose period fell back below target."""
        if task.is_one_time or task.target_count == 0:
            return

        start, end = recurrence.period_bounds(task, anchor)
        remaining = await self.count_completions_in_period(task=task, start=start, end=end)
        if remaining < task.target_count:
            await self._period_results.delete_period_result(task_id=task.id, period_start=start)

    async def uncomplete(self, *, task: Task, user_id: str, today: date) -> None:
        """Undo the user's most recent completion in the current period.

        Raises:
            NotCompletedError: If the user has no completion in the current period
        """
        with span("completion_service.uncomplete"):
            if task.is_one_time:
                start, end = constants.ALL_TIME_START, constants.ALL_TIME_END
            else:
                start, end = current_period(task, today)

            async with self._db.transaction():
                latest = await self._db.get_first_record(
                    collection=COLLECTION,
                    filter_query=_period_filter(task.id, start, end, user_id=user_id),
                    sort="completed_at DESC",
                )
                if latest is None:
                    msg = f"No completion of task {task.id} to undo for the current period"
                    raise NotCompletedError(msg)

                await self._db.delete_record(collection=COLLECTION, record_id=latest["id"])
                await self._reevaluate_period(task=task, anchor=date.fromisoformat(latest["due_date"]))

            log_event(logger, "info", "Completion undone", user_id=user_id, task_id=task.id)
            await dispatch_safely(
                "on_completion_undone",
                self._dispatcher.on_completion_undone(task, user_id, task.household_id),
                task_id=task.id,
                user_id=user_id,
            )

    async def get_completion(self, *, completion_id: str) -> Completion:
        """Fetch a completion by ID.

        Raises:
            CompletionNotFoundError: If it does not exist
        """
        try:
            record = await self._db.get_record(collection=COLLECTION, record_id=completion_id)
        except RecordNotFoundError as e:
            msg = f"Completion not found: {completion_id}"
            raise CompletionNotFoundError(msg) from e
        return Completion(**record)

    async def _get_pending(self, completion_id: str) -> Completion:
        completion = await self.get_completion(completion_id=completion_id)
        if completion.status != CompletionStatus.PENDING:
            msg = f"Completion {completion_id} is not pending review"
            raise CompletionNotFoundError(msg)
        return completion

    async def approve_completion(self, *, completion_id: str) -> Completion:
        """Approve a pending completion.

        Raises:
            CompletionNotFoundError: If it does not exist or is not pending
        """
        with span("completion_service.approve_completion"):
            async with self._db.transaction():
                await self._get_pending(completion_id)
                record = await self._db.update_record(
                    collection=COLLECTION, record_id=completion_id, data={"status": CompletionStatus.APPROVED}
                )
            logger.info("Completion approved", extra={"completion_id": completion_id})
            return Completion(**record)

    async def reject_completion(self, *, task: Task, completion_id: str) -> None:
        """Reject a pending completion, reversing its consequences.

        Args:
            task: Task the completion belongs to
            completion_id: Pending completion to reject

        Raises:
            CompletionNotFoundError: If it does not exist, is not pending, or
                belongs to a different task
        """
        with span("completion_service.reject_completion"):
            async with self._db.transaction():
                completion = await self._get_pending(completion_id)
                if completion.task_id != task.id:
                    msg = f"Completion {completion_id} does not belong to task {task.id}"
                    raise CompletionNotFoundError(msg)

                await self._db.delete_record(collection=COLLECTION, record_id=completion_id)
                await self._reevaluate_period(task=task, anchor=completion.due_date)

            await dispatch_safely(
                "on_completion_rejected",
                self._dispatcher.on_completion_rejected(task, completion.user_id, completion.household_id),
                task_id=task.id,
                user_id=completion.user_id,
            )

            log_event(
                logger,
                "info",
                "Completion rejected",
                user_id=completion.user_id,
                task_id=task.id,
                completion_id=completion_id,
            )

    async def list_pending_reviews(self, *, household_id: str) -> list[Completion]:
        """List a household's completions awaiting review, newest first."""
        records = await self._db.list_all_records(
            collection=COLLECTION,
            filter_query=f'household_id = "{sanitize_param(household_id)}" && status = "{CompletionStatus.PENDING}"',
            sort="completed_at DESC",
        )
        return [Completion(**r) for r in records]

    async def list_completions(self, *, task_id: str, user_id: str | None = None) -> list[Completion]:
        """List a task's completions, newest first, optionally for one user."""
        query = f'task_id = "{sanitize_param(task_id)}"'
        if user_id is not None:
            query += f' && user_id = "{sanitize_param(user_id)}"'
        records = await self._db.list_all_records(
            collection=COLLECTION,
            filter_query=query,
            sort="completed_at DESC",
        )
        return [Completion(**r) for r in records]

    async def get_last_completion(self, *, task_id: str, user_id: str) -> Completion | None:
        """Return the user's most recent completion of a task."""
        record = await self._db.get_first_record(
            collection=COLLECTION,
            filter_query=f'task_id = "{sanitize_param(task_id)}" && user_id = "{sanitize_param(user_id)}"',
            sort="completed_at DESC",
        )
        return Completion(**record) if record else None
