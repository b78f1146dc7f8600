"""Date and datetime parsing for query filters and request payloads."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple

from ..errors import BusinessException


def to_naive_utc(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_filter_datetime(value: Optional[str], field_name: str, end_of_day: bool = False) -> Optional[datetime]:
    """Parse a query filter given either as a date or a datetime.

    Date-only input expands to the start of the day, or to 23:59:59 when
    `end_of_day` is set.
    """
    if value is None or not value.strip():
        return None
    raw = value.strip()
    if len(raw) == 10:
        try:
            day = date.fromisoformat(raw)
        except ValueError as exc:
            raise BusinessException.invalid_input(field_name, value, "expected YYYY-MM-DD").with_cause(exc)
        return datetime.combine(day, time(23, 59, 59) if end_of_day else time.min)
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise BusinessException.invalid_input(field_name, value, "expected ISO-8601 date or datetime").with_cause(exc)
    return to_naive_utc(parsed)


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    """First instant and last second of a calendar month."""
    if month < 1 or month > 12:
        raise BusinessException.invalid_input("month", month, "must be between 1 and 12")
    if year < 1 or year > 9999:
        raise BusinessException.invalid_input("year", year, "must be between 1 and 9999")
    last_day = calendar.monthrange(year, month)[1]
    return (datetime(year, month, 1), datetime(year, month, last_day, 23, 59, 59))


def format_year_month(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"
