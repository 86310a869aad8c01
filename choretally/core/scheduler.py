"""Scheduler for automated jobs (lapsed-period finalization)."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from choretally.core.config import constants, settings
from choretally.domain.task import Task
from choretally.services.period_finalizer import PeriodFinalizer


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

FINALIZER_JOB_ID = "finalize_lapsed_periods"

TaskSource = Callable[[], Awaitable[list[Task]]]


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[None]],
    job_name: str,
    max_retries: int = constants.JOB_MAX_RETRIES,
    base_delay: float = constants.JOB_RETRY_BASE_DELAY_SECONDS,
) -> bool:
    """Execute job with retry logic and exponential backoff.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for logging
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds for exponential backoff

    Returns:
        True if the job eventually succeeded, False once retries are exhausted
    """
    last_error = None
    for attempt in range(max_retries):
        try:
            logger.info("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            await job_func()
            logger.info("%s completed successfully", job_name)
            return True
        except Exception as e:
            last_error = str(e)
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt + 1, max_retries, last_error)

            if attempt < max_retries - 1:
                delay = base_delay**attempt
                logger.info("Retrying %s in %ds", job_name, delay)
                await asyncio.sleep(delay)

    logger.error("%s failed after %d attempts: %s", job_name, max_retries, last_error)
    return False


def make_finalizer_job(
    finalizer: PeriodFinalizer,
    task_source: TaskSource,
    today: Callable[[], date] = date.today,
) -> Callable[[], Awaitable[None]]:
    """Bind a finalizer to the collaborator that lists current tasks."""

    async def run() -> None:
        tasks = await task_source()
        await finalizer.finalize_lapsed_periods(tasks=tasks, today=today())

    return run


def start_scheduler(finalizer: PeriodFinalizer, task_source: TaskSource) -> None:
    """Start the scheduler and register the nightly finalizer job.

    This should be called during application startup.
    """
    if not settings.enable_period_finalizer:
        logger.info("Period finalizer disabled, scheduler not started")
        return

    logger.info("Starting scheduler")
    job = make_finalizer_job(finalizer, task_source)

    scheduler.add_job(
        retry_job_with_backoff,
        args=[job, FINALIZER_JOB_ID],
        trigger=CronTrigger(hour=settings.finalizer_hour, minute=settings.finalizer_minute),
        id=FINALIZER_JOB_ID,
        name="Finalize Lapsed Task Periods",
        replace_existing=True,
    )
    logger.info(
        "Scheduled period finalizer job: daily at %d:%02d", settings.finalizer_hour, settings.finalizer_minute
    )

    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during application shutdown.
    """
    if scheduler.running:
        logger.info("Stopping scheduler")
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
