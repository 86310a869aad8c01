"""Unit tests for the completion ledger."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from choretally.core.db_client import DatabaseError
from choretally.core.errors import (
    AlreadyCompletedError,
    CompletionNotFoundError,
    NotAssignedError,
    NotCompletedError,
    NotDueTodayError,
)
from choretally.domain.completion import CompletionStatus
from choretally.domain.period_result import PeriodStatus
from choretally.domain.task import CustomDates, Daily, HabitType, OneTime, TimePeriod, Weekly
from choretally.services.completion_service import CompletionLedger


MONDAY = 1


@pytest.mark.unit
class TestComplete:
    """Tests for recording completions."""

    async def test_daily_completion_is_credited_to_today(self, ledger, make_task):
        task = make_task(recurrence=Daily())

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert completion.due_date == date(2024, 1, 10)
        assert completion.status == CompletionStatus.APPROVED
        assert completion.household_id == "house-1"

    async def test_weekly_completion_is_credited_to_next_due_date(self, ledger, make_task):
        task = make_task(recurrence=Weekly(weekday=MONDAY))

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert completion.due_date == date(2024, 1, 15)

    async def test_one_time_completion_is_credited_to_today(self, ledger, make_task):
        task = make_task(recurrence=OneTime())

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert completion.due_date == date(2024, 1, 10)

    async def test_task_assigned_to_someone_else(self, ledger, make_task):
        task = make_task(assigned_user_id="user-2")

        with pytest.raises(NotAssignedError):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

    async def test_assigned_user_can_complete(self, ledger, make_task):
        task = make_task(assigned_user_id="user-1")

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert completion.user_id == "user-1"

    async def test_second_completion_in_period_is_rejected(self, ledger, make_task):
        task = make_task(recurrence=Daily(), target_count=1)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        with pytest.raises(AlreadyCompletedError):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

    async def test_next_day_opens_a_new_period(self, ledger, make_task):
        task = make_task(recurrence=Daily(), target_count=1)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 11))

        assert completion.due_date == date(2024, 1, 11)

    async def test_target_is_counted_per_user(self, ledger, make_task):
        task = make_task(recurrence=Daily(), target_count=1)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        completion = await ledger.complete(task=task, user_id="user-2", today=date(2024, 1, 10))

        assert completion.user_id == "user-2"

    async def test_exceed_allowed(self, ledger, make_task):
        task = make_task(recurrence=Daily(), target_count=1, allow_exceed_target=True)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        completions = await ledger.list_completions(task_id=task.id)

        assert len(completions) == 2

    async def test_one_time_with_target_is_limited_all_time(self, ledger, make_task):
        task = make_task(recurrence=OneTime(), target_count=1)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        with pytest.raises(AlreadyCompletedError):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 6, 1))

    async def test_free_form_one_time_is_unlimited(self, ledger, make_task):
        task = make_task(recurrence=OneTime(), target_count=0)
        for _ in range(3):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert len(await ledger.list_completions(task_id=task.id, user_id="user-1")) == 3

    async def test_exhausted_custom_dates_are_not_due(self, ledger, make_task):
        task = make_task(recurrence=CustomDates(dates=[date(2024, 1, 15)]))

        with pytest.raises(NotDueTodayError):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 16))

    async def test_requires_review_records_pending(self, ledger, make_task):
        task = make_task(requires_review=True)

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert completion.status == CompletionStatus.PENDING


@pytest.mark.unit
class TestPeriodFinalizationOnTarget:
    """Tests for period results written when the target is met."""

    async def test_target_three_finalizes_on_third_completion(self, ledger, period_store, make_task):
        task = make_task(recurrence=Daily(), time_period=TimePeriod.WEEK, target_count=3)

        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 8))
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 9))
        assert not await period_store.is_period_finalized(task_id=task.id, period_start=date(2024, 1, 8))

        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        result = await period_store.get_period_result(task_id=task.id, period_start=date(2024, 1, 8))
        assert result is not None
        assert result.status == PeriodStatus.COMPLETED
        assert result.completions_count == 3
        assert result.target_count == 3
        assert result.period_end == date(2024, 1, 14)
        assert result.finalized_by == "user-1"

    async def test_fourth_completion_in_period_is_rejected(self, ledger, make_task):
        task = make_task(recurrence=Daily(), time_period=TimePeriod.WEEK, target_count=3)
        for day in (8, 9, 10):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, day))

        with pytest.raises(AlreadyCompletedError):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 11))

    async def test_uncomplete_below_target_deletes_result(self, ledger, period_store, make_task):
        task = make_task(recurrence=Daily(), time_period=TimePeriod.WEEK, target_count=3)
        for day in (8, 9, 10):
            await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, day))

        await ledger.uncomplete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert not await period_store.is_period_finalized(task_id=task.id, period_start=date(2024, 1, 8))
        assert len(await ledger.list_completions(task_id=task.id)) == 2

    async def test_one_time_tasks_are_not_finalized(self, ledger, db, make_task):
        task = make_task(recurrence=OneTime(), target_count=1)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert await db.count_records(collection="task_period_results") == 0


@pytest.mark.unit
class TestUncomplete:
    """Tests for undoing completions."""

    async def test_uncomplete_removes_latest_completion(self, ledger, make_task, dispatcher):
        task = make_task(recurrence=Daily(), allow_exceed_target=True)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        await ledger.uncomplete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert len(await ledger.list_completions(task_id=task.id)) == 1
        assert dispatcher.events[-1] == ("undone", task.id, "user-1", "house-1")

    async def test_uncomplete_without_completion_raises(self, ledger, make_task):
        task = make_task(recurrence=Daily())

        with pytest.raises(NotCompletedError):
            await ledger.uncomplete(task=task, user_id="user-1", today=date(2024, 1, 10))

    async def test_uncomplete_ignores_earlier_periods(self, ledger, make_task):
        task = make_task(recurrence=Daily())
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 9))

        with pytest.raises(NotCompletedError):
            await ledger.uncomplete(task=task, user_id="user-1", today=date(2024, 1, 10))

    async def test_uncomplete_only_touches_own_completions(self, ledger, make_task):
        task = make_task(recurrence=Daily())
        await ledger.complete(task=task, user_id="user-2", today=date(2024, 1, 10))

        with pytest.raises(NotCompletedError):
            await ledger.uncomplete(task=task, user_id="user-1", today=date(2024, 1, 10))


@pytest.mark.unit
class TestReview:
    """Tests for the approve/reject review workflow."""

    async def test_list_pending_reviews(self, ledger, make_task):
        reviewed = make_task(requires_review=True)
        unreviewed = make_task(id="task-2")
        await ledger.complete(task=reviewed, user_id="user-1", today=date(2024, 1, 10))
        await ledger.complete(task=unreviewed, user_id="user-1", today=date(2024, 1, 10))

        pending = await ledger.list_pending_reviews(household_id="house-1")

        assert [c.task_id for c in pending] == ["task-1"]
        assert await ledger.list_pending_reviews(household_id="house-2") == []

    async def test_approve_pending(self, ledger, make_task):
        task = make_task(requires_review=True)
        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        approved = await ledger.approve_completion(completion_id=completion.id)

        assert approved.status == CompletionStatus.APPROVED
        assert await ledger.list_pending_reviews(household_id="house-1") == []

    async def test_approve_twice_raises(self, ledger, make_task):
        task = make_task(requires_review=True)
        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))
        await ledger.approve_completion(completion_id=completion.id)

        with pytest.raises(CompletionNotFoundError):
            await ledger.approve_completion(completion_id=completion.id)

    async def test_approve_missing_raises(self, ledger):
        with pytest.raises(CompletionNotFoundError):
            await ledger.approve_completion(completion_id="missing")

    async def test_reject_pending_deletes_and_reverses(self, ledger, period_store, make_task, dispatcher):
        task = make_task(requires_review=True, target_count=1)
        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))
        assert await period_store.is_period_finalized(task_id=task.id, period_start=date(2024, 1, 10))

        await ledger.reject_completion(task=task, completion_id=completion.id)

        with pytest.raises(CompletionNotFoundError):
            await ledger.get_completion(completion_id=completion.id)
        assert not await period_store.is_period_finalized(task_id=task.id, period_start=date(2024, 1, 10))
        assert ("rejected", task.id, "user-1", "house-1") in dispatcher.events

    async def test_reject_approved_raises(self, ledger, make_task):
        task = make_task()
        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        with pytest.raises(CompletionNotFoundError):
            await ledger.reject_completion(task=task, completion_id=completion.id)

    async def test_reject_with_wrong_task_raises(self, ledger, make_task):
        task = make_task(requires_review=True)
        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        with pytest.raises(CompletionNotFoundError):
            await ledger.reject_completion(task=make_task(id="task-2"), completion_id=completion.id)


@pytest.mark.unit
class TestDispatch:
    """Tests for consequence dispatch from the ledger."""

    async def test_good_habit_dispatches_with_streak(self, ledger, make_task, dispatcher):
        task = make_task(recurrence=Daily())
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 9))
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert dispatcher.events == [
            ("good", task.id, "user-1", "house-1", 1),
            ("good", task.id, "user-1", "house-1", 2),
        ]

    async def test_bad_habit_dispatches_bad_completion(self, ledger, make_task, dispatcher):
        task = make_task(habit_type=HabitType.BAD)
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert dispatcher.events == [("bad", task.id, "user-1", "house-1")]

    async def test_dispatcher_failure_does_not_block_completion(self, db, make_task):
        failing = AsyncMock()
        failing.on_good_completion = AsyncMock(side_effect=RuntimeError("points service down"))
        ledger = CompletionLedger(db, dispatcher=failing)
        task = make_task()

        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        assert completion.id
        failing.on_good_completion.assert_awaited_once()
        assert len(await ledger.list_completions(task_id=task.id)) == 1


@pytest.mark.unit
class TestQueries:
    """Tests for completion lookups."""

    async def test_get_last_completion(self, ledger, make_task):
        task = make_task(recurrence=Daily())
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 9))
        latest = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        last = await ledger.get_last_completion(task_id=task.id, user_id="user-1")

        assert last is not None
        assert last.id == latest.id

    async def test_get_last_completion_none(self, ledger):
        assert await ledger.get_last_completion(task_id="task-1", user_id="user-1") is None

    async def test_count_completions_in_period(self, ledger, make_task):
        task = make_task(recurrence=Daily())
        await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 9))
        await ledger.complete(task=task, user_id="user-2", today=date(2024, 1, 9))

        total = await ledger.count_completions_in_period(task=task, start=date(2024, 1, 9), end=date(2024, 1, 9))
        mine = await ledger.count_completions_in_period(
            task=task, start=date(2024, 1, 9), end=date(2024, 1, 9), user_id="user-1"
        )

        assert (total, mine) == (2, 1)


@pytest.mark.unit
class TestStoredIds:
    """Tests that ids are matched exactly as stored."""

    async def test_digit_only_ids_keep_leading_zeros(self, ledger, analytics, make_task):
        task = make_task(id="0042", household_id="0100")

        await ledger.complete(task=task, user_id="007", today=date(2024, 1, 10))

        count = await ledger.count_completions_in_period(
            task=task, start=date(2024, 1, 10), end=date(2024, 1, 10), user_id="007"
        )
        assert count == 1
        assert await analytics.current_streak(task=task, user_id="007", today=date(2024, 1, 10)) == 1
        with pytest.raises(AlreadyCompletedError):
            await ledger.complete(task=task, user_id="007", today=date(2024, 1, 10))

    async def test_digit_only_household_lists_pending_reviews(self, ledger, make_task):
        task = make_task(id="0042", household_id="0100", requires_review=True)
        await ledger.complete(task=task, user_id="007", today=date(2024, 1, 10))

        pending = await ledger.list_pending_reviews(household_id="0100")

        assert [c.user_id for c in pending] == ["007"]


@pytest.mark.unit
class TestConcurrentWrites:
    """Tests for writes from concurrent operations on one connection."""

    async def test_approval_survives_concurrent_rolled_back_completion(self, ledger, make_task):
        reviewed = make_task(id="reviewed", requires_review=True)
        pending = await ledger.complete(task=reviewed, user_id="user-1", today=date(2024, 1, 10))
        daily = make_task(id="daily")
        await ledger.complete(task=daily, user_id="user-2", today=date(2024, 1, 10))

        count_in_period = ledger.count_completions_in_period

        async def slow_count(**kwargs):
            result = await count_in_period(**kwargs)
            await asyncio.sleep(0.05)
            return result

        with patch.object(ledger, "count_completions_in_period", side_effect=slow_count):
            duplicate, approved = await asyncio.gather(
                ledger.complete(task=daily, user_id="user-2", today=date(2024, 1, 10)),
                ledger.approve_completion(completion_id=pending.id),
                return_exceptions=True,
            )

        assert isinstance(duplicate, AlreadyCompletedError)
        assert approved.status == CompletionStatus.APPROVED
        stored = await ledger.get_completion(completion_id=pending.id)
        assert stored.status == CompletionStatus.APPROVED


@pytest.mark.unit
class TestRejectFailure:
    """Tests for reject_completion when storage fails."""

    async def test_failed_delete_does_not_dispatch_rejection(self, db, ledger, make_task, dispatcher):
        task = make_task(requires_review=True)
        completion = await ledger.complete(task=task, user_id="user-1", today=date(2024, 1, 10))

        with (
            patch.object(db, "delete_record", side_effect=DatabaseError("disk I/O error")),
            pytest.raises(DatabaseError),
        ):
            await ledger.reject_completion(task=task, completion_id=completion.id)

        assert all(event[0] != "rejected" for event in dispatcher.events)
        stored = await ledger.get_completion(completion_id=completion.id)
        assert stored.status == CompletionStatus.PENDING
