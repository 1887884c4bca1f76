"""
Room availability queries.

``AvailabilityService.is_room_free`` is the one conflict primitive of the
system: booking creation and rescheduling both go through it, and the
repository's write-time guard applies the same live-overlap rule.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from .cache import SimpleTTLCache, grid_key
from .errors import BookingConflictError, InvalidWindowError, RoomInactiveError
from .models import Booking, Room
from .repositories import BookingRepository, RoomRepository, partition_by_room
from .slots import SlotOptions, TimeSlot, business_day_grid, free_slots_in_grid
from .timewindow import DayLike, as_date, at_hour, format_day_key, overlaps, to_local_naive

logger = logging.getLogger(__name__)


@dataclass
class RoomAvailability:
    room: Room
    day: date
    slots: List[TimeSlot]
    total_bookings: int

    @property
    def day_key(self) -> str:
        return format_day_key(self.day)

    @property
    def total_available_slots(self) -> int:
        return len(self.slots)

    @property
    def is_available(self) -> bool:
        return bool(self.slots)

    @property
    def next_available_slot(self) -> Optional[datetime]:
        return self.slots[0].start if self.slots else None

    @property
    def last_available_slot(self) -> Optional[datetime]:
        return self.slots[-1].start if self.slots else None


@dataclass
class RoomOccupancy:
    room: Room
    start_day: date
    end_day: date
    booked_hours: float
    business_hours: float
    bookings: List[Booking] = field(default_factory=list)

    @property
    def occupancy_rate(self) -> float:
        if self.business_hours <= 0:
            return 0.0
        return round(self.booked_hours / self.business_hours * 100, 2)


class AvailabilityService:
    """Read-only answers about when rooms are free."""

    def __init__(
        self,
        rooms: RoomRepository,
        bookings: BookingRepository,
        default_options: Optional[SlotOptions] = None,
        grid_cache: Optional[SimpleTTLCache[Tuple[TimeSlot, ...]]] = None,
    ):
        self.rooms = rooms
        self.bookings = bookings
        self.default_options = default_options or SlotOptions()
        self.grid_cache = grid_cache

    def _bookable_room(self, room_id: int, allow_inactive: bool = False) -> Room:
        room = self.rooms.find_by_id(room_id)
        if not room.is_active and not allow_inactive:
            raise RoomInactiveError(room_id)
        return room

    def conflicting_bookings(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
        allow_inactive: bool = False,
    ) -> List[Booking]:
        start, end = to_local_naive(start), to_local_naive(end)
        if start >= end:
            raise InvalidWindowError(start, end)
        self._bookable_room(room_id, allow_inactive)
        return self.bookings.find_live_overlapping(room_id, start, end, exclude_id=exclude_booking_id)

    def is_room_free(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
        allow_inactive: bool = False,
    ) -> bool:
        """True when no live booking of the room overlaps ``[start, end)``.

        Raises:
            RoomNotFoundError: the room does not exist
            RoomInactiveError: the room is deactivated and ``allow_inactive`` is not set
        """
        return not self.conflicting_bookings(room_id, start, end, exclude_booking_id, allow_inactive)

    def assert_room_free(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        conflicts = self.conflicting_bookings(room_id, start, end, exclude_booking_id)
        if conflicts:
            logger.info("Room %s is busy for [%s, %s): bookings %s", room_id, start, end, [b.id for b in conflicts])
            raise BookingConflictError(room_id, start, end, [booking.id for booking in conflicts])

    def _grid(self, day: DayLike, options: SlotOptions) -> Tuple[TimeSlot, ...]:
        key = grid_key(day, options.cache_fragment())
        grid = self.grid_cache.get(key) if self.grid_cache is not None else None
        if grid is None:
            grid = business_day_grid(day, options.opening_hour, options.closing_hour, options.slot_minutes)
            if self.grid_cache is not None:
                self.grid_cache.set(key, grid)
        return grid

    def _slots(self, bookings: List[Booking], day: DayLike, options: SlotOptions) -> List[TimeSlot]:
        return free_slots_in_grid(self._grid(day, options), bookings, day)

    def free_slots_for_room(self, room_id: int, day: DayLike, options: Optional[SlotOptions] = None) -> RoomAvailability:
        """Free slots of one room on ``day``.

        Inactive rooms are rejected unless ``options.include_inactive`` is set
        (admin audit).
        """
        options = options or self.default_options
        room = self._bookable_room(room_id, allow_inactive=options.include_inactive)
        bookings = self.bookings.find_by_room_and_day(room_id, day)
        return RoomAvailability(
            room=room, day=as_date(day), slots=self._slots(bookings, day, options), total_bookings=len(bookings)
        )

    def free_slots_for_all_active_rooms(
        self, day: DayLike, options: Optional[SlotOptions] = None
    ) -> List[RoomAvailability]:
        """Free slots for every active room, using one room query and one booking query."""

        options = options or self.default_options
        rooms = self.rooms.find_all(include_inactive=True) if options.include_inactive else self.rooms.find_active()
        by_room = partition_by_room(self.bookings.find_all_live_by_day(day))

        results: List[RoomAvailability] = []
        for room in rooms:
            room_bookings = by_room.get(room.id, [])
            slots = self._slots(room_bookings, day, options)
            if not slots and not options.include_fully_booked:
                continue
            results.append(
                RoomAvailability(room=room, day=as_date(day), slots=slots, total_bookings=len(room_bookings))
            )
        return results

    def room_occupancy(
        self, room_id: int, start_day: DayLike, end_day: DayLike, options: Optional[SlotOptions] = None
    ) -> RoomOccupancy:
        """Share of weekday business hours covered by live bookings between two days (inclusive)."""

        options = options or self.default_options
        first, last = as_date(start_day), as_date(end_day)
        if last < first:
            raise InvalidWindowError(at_hour(first, 0), at_hour(last, 0))
        room = self.rooms.find_by_id(room_id)
        range_start, range_end = at_hour(first, 0), at_hour(last, 24)
        bookings = self.bookings.find_live_in_range(room_id, range_start, range_end)

        business_days = [
            first + timedelta(days=offset)
            for offset in range((last - first).days + 1)
            if (first + timedelta(days=offset)).weekday() < 5
        ]
        # Bookings are clipped to each weekday business window.
        booked_seconds = 0.0
        for day in business_days:
            opening, closing = at_hour(day, options.opening_hour), at_hour(day, options.closing_hour)
            for booking in bookings:
                if overlaps(booking.start_time, booking.end_time, opening, closing):
                    clipped = min(booking.end_time, closing) - max(booking.start_time, opening)
                    booked_seconds += clipped.total_seconds()
        return RoomOccupancy(
            room=room,
            start_day=first,
            end_day=last,
            booked_hours=round(booked_seconds / 3600, 2),
            business_hours=float(len(business_days) * (options.closing_hour - options.opening_hour)),
            bookings=bookings,
        )
