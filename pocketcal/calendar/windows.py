"""Query windows for the day, week and month views."""

from datetime import date, datetime, time, timedelta
from typing import Union

DateLike = Union[date, datetime]

MONTH_GRID_DAYS = 42


def _as_date(day: DateLike) -> date:
    return day.date() if isinstance(day, datetime) else day


def day_window(day: DateLike) -> tuple[datetime, datetime]:
    """[00:00 of day, 00:00 of next day)."""
    start = datetime.combine(_as_date(day), time.min)
    return start, start + timedelta(days=1)


def week_window(day: DateLike, week_start: int = 0) -> tuple[datetime, datetime]:
    """Seven days starting on the ``week_start`` weekday (0 = Monday) on or before ``day``."""
    d = _as_date(day)
    first = d - timedelta(days=(d.weekday() - week_start) % 7)
    start = datetime.combine(first, time.min)
    return start, start + timedelta(days=7)


def month_grid_window(day: DateLike, week_start: int = 0) -> tuple[datetime, datetime]:
    """Six-week grid covering the month of ``day``, starting on the week of its 1st."""
    first_of_month = _as_date(day).replace(day=1)
    start, _ = week_window(first_of_month, week_start)
    return start, start + timedelta(days=MONTH_GRID_DAYS)


def month_window(day: DateLike) -> tuple[datetime, datetime]:
    """[first day of the month, first day of the next month)."""
    first = _as_date(day).replace(day=1)
    next_first = (first + timedelta(days=32)).replace(day=1)
    return datetime.combine(first, time.min), datetime.combine(next_first, time.min)
