"""Pure helpers for reasoning about half-open booking windows.

All windows are treated as ``[start, end)``: a booking that ends exactly when
another one starts does not overlap it. Datetimes are local wall-clock values;
timezone-aware values are accepted as long as both sides of a comparison agree.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union

DEFAULT_MIN_MINUTES = 30
DEFAULT_MAX_HOURS = 120

DayLike = Union[date, datetime]


def overlaps(existing_start: datetime, existing_end: datetime, new_start: datetime, new_end: datetime) -> bool:
    """Return True when ``[new_start, new_end)`` intersects ``[existing_start, existing_end)``."""

    return new_start < existing_end and new_end > existing_start


def is_in_past(instant: datetime, now: Optional[datetime] = None) -> bool:
    """Return True if ``instant`` is strictly before the current instant.

    The comparison is exact: a 09:00 start is already in the past at 10:00 on
    the same day.
    """

    if now is None:
        now = datetime.now(instant.tzinfo)
    return instant < now


def duration_minutes(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def is_valid_duration(
    start: datetime,
    end: datetime,
    min_minutes: int = DEFAULT_MIN_MINUTES,
    max_hours: int = DEFAULT_MAX_HOURS,
) -> bool:
    minutes = duration_minutes(start, end)
    return min_minutes <= minutes <= max_hours * 60


def format_day_key(day: DayLike) -> str:
    """Canonical ``YYYY-MM-DD`` identity of the local calendar day."""

    return f"{day.year:04d}-{day.month:02d}-{day.day:02d}"


def parse_day_key(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ``ValueError`` when malformed."""

    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid date format {value!r}. Use YYYY-MM-DD") from exc


def as_date(day: DayLike) -> date:
    return day.date() if isinstance(day, datetime) else day


def at_hour(day: DayLike, hour: int) -> datetime:
    """Wall-clock instant ``hour:00`` on ``day``; ``hour=24`` means the next midnight."""

    midnight = datetime.combine(as_date(day), time.min)
    return midnight + timedelta(hours=hour)


def day_bounds(day: DayLike) -> Tuple[datetime, datetime]:
    """Half-open bounds ``[00:00, next 00:00)`` of the calendar day."""

    start = at_hour(day, 0)
    return start, start + timedelta(days=1)


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to local wall-clock time; naive values pass through."""

    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
