"""Consequence dispatcher contract.

Rewards and punishments live outside the tracking engine. The ledger and the
period finalizer only know this call contract, and every call is best effort:
a failing dispatcher is logged and never undoes a recorded completion or a
finalized period.
"""

import logging
from collections.abc import Awaitable
from datetime import date
from typing import Protocol, runtime_checkable

from choretally.core.logging import span
from choretally.domain.task import Task


logger = logging.getLogger(__name__)


@runtime_checkable
class ConsequenceDispatcher(Protocol):
    """Outbound hooks fired by the completion ledger and the period finalizer."""

    async def on_good_completion(self, task: Task, user_id: str, household_id: str, streak: int) -> None:
        """A good-habit task was completed; ``streak`` is the user's current streak."""
        ...

    async def on_bad_completion(self, task: Task, user_id: str, household_id: str) -> None:
        """A bad-habit task was recorded (the user did the thing)."""
        ...

    async def on_completion_rejected(self, task: Task, user_id: str, household_id: str) -> None:
        """A pending completion was rejected by a reviewer."""
        ...

    async def on_completion_undone(self, task: Task, user_id: str, household_id: str) -> None:
        """The user undid their own completion."""
        ...

    async def on_period_failed(self, task: Task, household_id: str, period_start: date) -> None:
        """A good-habit period lapsed short of target.

        The missed-task consequence goes to ``task.assigned_user_id``, or to
        every household member when the task is unassigned.
        """
        ...


class NullDispatcher:
    """Dispatcher that does nothing, used when no consequences are configured."""

    async def on_good_completion(self, task: Task, user_id: str, household_id: str, streak: int) -> None:
        return None

    async def on_bad_completion(self, task: Task, user_id: str, household_id: str) -> None:
        return None

    async def on_completion_rejected(self, task: Task, user_id: str, household_id: str) -> None:
        return None

    async def on_completion_undone(self, task: Task, user_id: str, household_id: str) -> None:
        return None

    async def on_period_failed(self, task: Task, household_id: str, period_start: date) -> None:
        return None


async def dispatch_safely(event: str, call: Awaitable[None], *, task_id: str, user_id: str | None) -> bool:
    """Await a dispatcher call, logging and swallowing any failure.

    Args:
        event: Name of the dispatcher hook, for logging
        call: The pending dispatcher coroutine
        task_id: Task the event concerns
        user_id: User the event concerns (None for unassigned tasks)

    Returns:
        True if the dispatcher call succeeded, False otherwise
    """
    with span(f"consequence_dispatcher.{event}"):
        try:
            await call
        except Exception:
            logger.exception(
                "Consequence dispatch failed",
                extra={"event": event, "task_id": task_id, "user_id": user_id},
            )
            return False
        return True
