"""Recurrence calculations for task scheduling.

All functions are pure and operate on naive calendar dates that the caller has
already normalized to the household's local day.

Weekday numbers stored on tasks use 0=Sunday ... 6=Saturday. Python's
``date.weekday()`` (0=Monday) is only used internally for week boundaries.
"""

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from choretally.core.config import Constants
from choretally.domain.task import CustomDates, Daily, Monthly, OneTime, Task, TimePeriod, Weekdays, Weekly


DAYS_PER_WEEK = 7


def sunday_weekday(day: date) -> int:
    """Return the weekday of ``day`` with 0=Sunday, 6=Saturday."""
    return (day.weekday() + 1) % DAYS_PER_WEEK


def last_day_of_month(day: date) -> date:
    """Return the last calendar day of ``day``'s month."""
    return day + relativedelta(day=31)


def month_start(day: date) -> date:
    """Return the first day of ``day``'s month."""
    return day.replace(day=1)


def week_start(day: date, week_start_day: int = 0) -> date:
    """Return the start of the week containing ``day``.

    Args:
        day: Any date in the week
        week_start_day: First day of the week (0=Monday, 6=Sunday)

    Returns:
        The most recent ``week_start_day`` on or before ``day``
    """
    days_since_start = (day.weekday() - week_start_day) % DAYS_PER_WEEK
    return day - timedelta(days=days_since_start)


def week_end(start: date) -> date:
    """Return the last day of the week that begins on ``start``."""
    return start + timedelta(days=DAYS_PER_WEEK - 1)


def _weekly_target(task: Task, rule: Weekly) -> int:
    if rule.weekday is not None:
        return rule.weekday
    return sunday_weekday(task.created_at.date())


def _monthly_target(task: Task, rule: Monthly) -> int:
    if rule.day is not None:
        return rule.day
    return task.created_at.day


def _clamped_day(day: date, target_day: int) -> date:
    """Return ``target_day`` in ``day``'s month, clamped to the month's last day."""
    return day + relativedelta(day=target_day)


def is_due_on_date(task: Task, day: date) -> bool:
    """Check whether ``task`` has an occurrence on ``day``."""
    match task.recurrence:
        case OneTime() | Daily():
            return True
        case Weekly() as rule:
            return sunday_weekday(day) == _weekly_target(task, rule)
        case Monthly() as rule:
            return day == _clamped_day(day, _monthly_target(task, rule))
        case Weekdays(days=days):
            return sunday_weekday(day) in days
        case CustomDates(dates=dates):
            return day in dates
    return False


def previous_due_date(task: Task, day: date) -> date:
    """Return the occurrence that precedes the one on ``day``.

    Used to walk a streak backwards from a matched due date.
    """
    match task.recurrence:
        case Weekly():
            return day - timedelta(days=DAYS_PER_WEEK)
        case Monthly() as rule:
            return day + relativedelta(months=-1, day=_monthly_target(task, rule))
        case Weekdays(days=days):
            for offset in range(1, Constants.WEEKDAY_SCAN_DAYS + 1):
                candidate = day - timedelta(days=offset)
                if sunday_weekday(candidate) in days:
                    return candidate
        case CustomDates(dates=dates):
            earlier = [d for d in dates if d < day]
            if earlier:
                return earlier[-1]
    return day - timedelta(days=1)


def next_due_date(task: Task, day: date) -> date | None:
    """Return the first occurrence on or after ``day``.

    Returns None for one-time tasks and for custom-date tasks whose dates are
    all in the past.
    """
    match task.recurrence:
        case OneTime():
            return None
        case Daily():
            return day
        case Weekly() as rule:
            days_until = (_weekly_target(task, rule) - sunday_weekday(day)) % DAYS_PER_WEEK
            return day + timedelta(days=days_until)
        case Monthly() as rule:
            target = _monthly_target(task, rule)
            this_month = _clamped_day(day, target)
            if day <= this_month:
                return this_month
            return day + relativedelta(months=1, day=target)
        case Weekdays(days=days):
            for offset in range(Constants.WEEKDAY_SCAN_DAYS):
                candidate = day + timedelta(days=offset)
                if sunday_weekday(candidate) in days:
                    return candidate
            return None
        case CustomDates(dates=dates):
            return next((d for d in dates if d >= day), None)
    return None


def resolve_time_period(task: Task) -> TimePeriod:
    """Return the task's counting period, inferring it from the recurrence when unset."""
    if task.time_period is not None:
        return task.time_period

    match task.recurrence:
        case Daily():
            return TimePeriod.DAY
        case Weekly() | Weekdays():
            return TimePeriod.WEEK
        case Monthly():
            return TimePeriod.MONTH
    return TimePeriod.NONE


def period_bounds(task: Task, day: date) -> tuple[date, date]:
    """Return the inclusive (start, end) of the counting period containing ``day``.

    Weeks run Monday to Sunday. Tasks without a period count over the
    all-time window.
    """
    match resolve_time_period(task):
        case TimePeriod.DAY:
            return day, day
        case TimePeriod.WEEK:
            start = week_start(day)
            return start, week_end(start)
        case TimePeriod.MONTH:
            return month_start(day), last_day_of_month(day)
        case TimePeriod.YEAR:
            return date(day.year, 1, 1), date(day.year, 12, 31)
    return Constants.ALL_TIME_START, Constants.ALL_TIME_END
