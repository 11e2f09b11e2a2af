"""Calendar-day helpers shared by the store, engine and scheduler.

All timestamps are naive local datetimes; a "day" is the local calendar day.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta

Clock = Callable[[], datetime]


def now() -> datetime:
    """Current local time."""
    return datetime.now()


def as_date(value: datetime | date | str) -> date:
    """Normalize a datetime, date or ISO string to a calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def day_key(value: datetime | date | str) -> str:
    """ISO calendar-day string, e.g. '2026-10-18'."""
    return as_date(value).isoformat()


def is_same_day(a: datetime | date | str, b: datetime | date | str) -> bool:
    return as_date(a) == as_date(b)


def is_day_before(earlier: datetime | date | str | None, later: datetime | date | str) -> bool:
    """True if `earlier` is exactly the calendar day before `later`."""
    if earlier is None:
        return False
    return as_date(earlier) == as_date(later) - timedelta(days=1)


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    next_month_start = date(year + month // 12, month % 12 + 1, 1)
    last_day = (next_month_start - timedelta(days=1)).day
    return value.replace(year=year, month=month, day=min(value.day, last_day))
