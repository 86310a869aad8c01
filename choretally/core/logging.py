"""Observability setup for the tracking engine, built on Pydantic Logfire.

Engine modules log through ``logging.getLogger(__name__)``; once
``configure_logfire()`` has run, those records are forwarded to Logfire
alongside the spans opened by the service layer.

    logger = logging.getLogger(__name__)
    log_event(logger, "info", "Period finalized", task_id="t1", period_start="2024-01-08")
"""

import logging

import logfire

from choretally import __version__
from choretally.core.config import settings


def configure_logfire() -> None:
    """Configure Logfire and route standard logging records through it.

    Data is only exported when ``LOGFIRE_TOKEN`` is set; without a token the
    spans still nest locally and logs go to the console.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name=settings.service_name,
        service_version=__version__,
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    logging.basicConfig(level=settings.log_level, handlers=[logfire.LogfireLoggingHandler()])

    logging.getLogger(__name__).info(
        "Logfire configured", extra={"service_name": settings.service_name, "environment": settings.environment}
    )


def span(name: str) -> logfire.LogfireSpan:
    """Open a span named ``<service>.<operation>`` around an engine operation.

    Usage:
        with span("completion_service.complete"):
            ...
    """
    return logfire.span(name)


def log_event(
    logger: logging.Logger,
    level: str,
    message: str,
    *,
    task_id: str | None = None,
    user_id: str | None = None,
    **extra: object,
) -> None:
    """Log an engine event with task/user context attached as ``extra`` fields.

    Context values that are None are left out of the record.

    Args:
        logger: Logger of the calling module
        level: Log level name ("debug", "info", "warning", "error")
        message: Log message
        task_id: Task the event concerns
        user_id: Acting or affected user
        **extra: Further context (period_start, status, completion_id, ...)
    """
    context = {"task_id": task_id, "user_id": user_id, **extra}
    getattr(logger, level.lower())(message, extra={k: v for k, v in context.items() if v is not None})
