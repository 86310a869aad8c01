"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator, Callable
from datetime import UTC, date, datetime
from typing import Any

import pytest

from choretally.core.db_client import MEMORY_DB, DBClient
from choretally.core.schema import init_db
from choretally.domain.task import Task
from choretally.services.analytics_service import AnalyticsService
from choretally.services.completion_service import CompletionLedger
from choretally.services.period_finalizer import PeriodFinalizer
from choretally.services.period_result_service import PeriodResultStore
from choretally.services.statistics_service import StatisticsService


class RecordingDispatcher:
    """Consequence dispatcher that records every call it receives."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []

    async def on_good_completion(self, task: Task, user_id: str, household_id: str, streak: int) -> None:
        self.events.append(("good", task.id, user_id, household_id, streak))

    async def on_bad_completion(self, task: Task, user_id: str, household_id: str) -> None:
        self.events.append(("bad", task.id, user_id, household_id))

    async def on_completion_rejected(self, task: Task, user_id: str, household_id: str) -> None:
        self.events.append(("rejected", task.id, user_id, household_id))

    async def on_completion_undone(self, task: Task, user_id: str, household_id: str) -> None:
        self.events.append(("undone", task.id, user_id, household_id))

    async def on_period_failed(self, task: Task, household_id: str, period_start: date) -> None:
        self.events.append(("period_failed", task.id, task.assigned_user_id, household_id, period_start))


@pytest.fixture
async def db() -> AsyncIterator[DBClient]:
    """Provides a fresh in-memory database with the schema applied."""
    client = await DBClient.open(MEMORY_DB)
    await init_db(client)
    yield client
    await client.close()


@pytest.fixture
def period_store(db: DBClient) -> PeriodResultStore:
    return PeriodResultStore(db)


@pytest.fixture
def analytics(db: DBClient, period_store: PeriodResultStore) -> AnalyticsService:
    return AnalyticsService(db, period_store)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def ledger(
    db: DBClient,
    dispatcher: RecordingDispatcher,
    period_store: PeriodResultStore,
    analytics: AnalyticsService,
) -> CompletionLedger:
    return CompletionLedger(db, dispatcher=dispatcher, period_results=period_store, analytics=analytics)


@pytest.fixture
def statistics_service(db: DBClient, period_store: PeriodResultStore) -> StatisticsService:
    return StatisticsService(db, period_store)


@pytest.fixture
def finalizer(
    ledger: CompletionLedger, period_store: PeriodResultStore, dispatcher: RecordingDispatcher
) -> PeriodFinalizer:
    return PeriodFinalizer(ledger, period_store, dispatcher=dispatcher)


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory for tasks; defaults to a daily good habit created on Monday 2024-01-01."""

    def _make(**overrides: Any) -> Task:
        data: dict[str, Any] = {
            "id": "task-1",
            "household_id": "house-1",
            "title": "Dishes",
            "created_at": datetime(2024, 1, 1, 9, 0, tzinfo=UTC),
        }
        data.update(overrides)
        return Task(**data)

    return _make


@pytest.fixture
def add_completion(db: DBClient) -> Callable[..., Any]:
    """Insert a completion row directly, bypassing the ledger's policy checks."""

    async def _add(task: Task, user_id: str, due_date: date, *, status: str = "approved") -> dict[str, Any]:
        return await db.create_record(
            collection="task_completions",
            data={
                "task_id": task.id,
                "user_id": user_id,
                "household_id": task.household_id,
                "completed_at": datetime.combine(due_date, datetime.min.time(), tzinfo=UTC),
                "due_date": due_date,
                "status": status,
            },
        )

    return _add
