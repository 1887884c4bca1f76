"""
Free-slot generation over business hours.

The day between the opening and closing hour is cut into uniform slots of
``slot_minutes``; a slot is free when it overlaps none of the busy intervals.
Slots are never split: a busy interval that starts or ends mid-slot blocks the
whole slot, so the reported availability is coarser than the real free time.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Tuple

from pydantic import BaseModel, Field, model_validator

from .timewindow import DayLike, at_hour, day_bounds, overlaps


@dataclass(frozen=True)
class TimeSlot:
    """
    A start/end pair: either a requested window or a computed free interval.

    Invariant: start must be before end.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeSlot") -> bool:
        return overlaps(other.start, other.end, self.start, self.end)

    def __str__(self) -> str:
        return f"{self.start:%Y-%m-%d %H:%M} - {self.end:%H:%M}"


class SlotOptions(BaseModel):
    """Business-hours configuration for a slot query."""

    opening_hour: int = Field(default=9, ge=0, le=23)
    closing_hour: int = Field(default=18, ge=1, le=24)
    slot_minutes: int = Field(default=30, gt=0, le=24 * 60)
    include_fully_booked: bool = False
    include_inactive: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_hours(self) -> "SlotOptions":
        if self.closing_hour <= self.opening_hour:
            raise ValueError("closing_hour must be after opening_hour")
        return self

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "SlotOptions":
        values = {
            "opening_hour": settings.opening_hour,
            "closing_hour": settings.closing_hour,
            "slot_minutes": settings.slot_minutes,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def cache_fragment(self) -> str:
        return f"{self.opening_hour}-{self.closing_hour}-{self.slot_minutes}"


def interval_bounds(interval: Any) -> Tuple[datetime, datetime]:
    """Read ``(start, end)`` from a TimeSlot-like object or an ORM booking."""

    if hasattr(interval, "start_time"):
        return interval.start_time, interval.end_time
    return interval.start, interval.end


def business_day_grid(
    day: DayLike,
    opening_hour: int = 9,
    closing_hour: int = 18,
    slot_minutes: int = 30,
) -> Tuple[TimeSlot, ...]:
    """
    Every fixed-width slot of ``day`` between the opening and closing hour.

    The grid depends only on the day and the business-hours configuration,
    never on bookings.

    Raises:
        ValueError: if the business hours or the slot width are invalid
    """
    if not 0 <= opening_hour <= 24 or not 0 <= closing_hour <= 24:
        raise ValueError(f"Hours must be between 0 and 24, got {opening_hour}-{closing_hour}")
    if closing_hour <= opening_hour:
        raise ValueError(f"Closing hour {closing_hour} must be after opening hour {opening_hour}")
    if slot_minutes <= 0:
        raise ValueError(f"Slot width must be positive, got {slot_minutes}")

    day_end = at_hour(day, closing_hour)
    step = timedelta(minutes=slot_minutes)

    slots: List[TimeSlot] = []
    current = at_hour(day, opening_hour)
    # A trailing remainder shorter than one slot is never emitted.
    while current + step <= day_end:
        slots.append(TimeSlot(start=current, end=current + step))
        current += step
    return tuple(slots)


def free_slots_in_grid(grid: Iterable[TimeSlot], busy_intervals: Iterable[Any], day: DayLike) -> List[TimeSlot]:
    """
    Slots of ``grid`` that overlap none of the busy intervals.

    Busy intervals are kept when they overlap the calendar day at all, so a
    booking that started the previous evening still blocks the morning.
    """
    calendar_start, calendar_end = day_bounds(day)
    busy = [
        (start, end)
        for start, end in map(interval_bounds, busy_intervals)
        if overlaps(calendar_start, calendar_end, start, end)
    ]
    return [slot for slot in grid if not any(overlaps(start, end, slot.start, slot.end) for start, end in busy)]


def generate_free_slots(
    busy_intervals: Iterable[Any],
    day: DayLike,
    opening_hour: int = 9,
    closing_hour: int = 18,
    slot_minutes: int = 30,
) -> List[TimeSlot]:
    """Return the free fixed-width slots of ``day`` in chronological order."""

    grid = business_day_grid(day, opening_hour, closing_hour, slot_minutes)
    return free_slots_in_grid(grid, busy_intervals, day)
