"""
Booking lifecycle: create, reschedule and cancel.

State machine::

    pending -> confirmed -> cancelled
    confirmed -> confirmed   (reschedule, new window)

Bookings are created directly as ``confirmed``; ``cancelled`` is terminal.
Each operation validates in a fixed order and performs a single durable
write, so a failure before the write leaves nothing behind.
Timezone-aware windows are converted to local wall-clock time first.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .availability import AvailabilityService
from .errors import (
    BookingStateError,
    DurationOutOfRangeError,
    ForbiddenError,
    InvalidWindowError,
    PastBookingError,
    RoomInactiveError,
)
from .events import BookingCancelled, BookingCreated, BookingEventSink, BookingRescheduled, NullEventSink
from .models import Booking, BookingStatus, User
from .repositories import BookingRepository, RoomRepository
from .schemas import BookingQuery
from .timewindow import DEFAULT_MAX_HOURS, DEFAULT_MIN_MINUTES, is_in_past, is_valid_duration, to_local_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingPolicy:
    min_minutes: int = DEFAULT_MIN_MINUTES
    max_hours: int = DEFAULT_MAX_HOURS

    @classmethod
    def from_settings(cls, settings) -> "BookingPolicy":
        return cls(min_minutes=settings.min_booking_minutes, max_hours=settings.max_booking_hours)


class BookingLifecycleManager:
    def __init__(
        self,
        rooms: RoomRepository,
        bookings: BookingRepository,
        availability: AvailabilityService,
        event_sink: Optional[BookingEventSink] = None,
        policy: Optional[BookingPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.rooms = rooms
        self.bookings = bookings
        self.availability = availability
        self.event_sink = event_sink or NullEventSink()
        self.policy = policy or BookingPolicy()
        self.clock = clock

    # Validation helpers

    def _validate_window(self, start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        start, end = to_local_naive(start), to_local_naive(end)
        if start >= end:
            raise InvalidWindowError(start, end)
        if not is_valid_duration(start, end, self.policy.min_minutes, self.policy.max_hours):
            raise DurationOutOfRangeError(start, end, self.policy.min_minutes, self.policy.max_hours)
        return start, end

    def _reject_past(self, instant: datetime, message: str, booking_id: Optional[int] = None) -> None:
        if is_in_past(instant, now=self.clock()):
            raise PastBookingError(message, instant, booking_id)

    @staticmethod
    def _authorize(booking: Booking, requester: User) -> None:
        if booking.user_id != requester.id and not requester.is_admin:
            raise ForbiddenError(booking.id, requester.id)

    @staticmethod
    def _reject_terminal(booking: Booking) -> None:
        if booking.status == BookingStatus.CANCELLED:
            raise BookingStateError(booking.id, booking.status.value)

    # Mutations

    def create(self, room_id: int, start: datetime, end: datetime, requester: User) -> Booking:
        start, end = self._validate_window(start, end)
        self._reject_past(start, "Cannot book a room in the past")

        room = self.rooms.find_by_id(room_id)
        if not room.is_active:
            raise RoomInactiveError(room_id)

        self.availability.assert_room_free(room_id, start, end)

        booking = self.bookings.insert(
            Booking(
                room_id=room_id,
                user_id=requester.id,
                start_time=start,
                end_time=end,
                status=BookingStatus.CONFIRMED,
            )
        )
        logger.info("User %s booked room %s for [%s, %s) as booking %s", requester.id, room_id, start, end, booking.id)
        self.event_sink.publish(
            BookingCreated(
                booking_id=booking.id,
                room_id=booking.room_id,
                user_id=booking.user_id,
                start_time=booking.start_time,
                end_time=booking.end_time,
            )
        )
        return self.bookings.find_by_id(booking.id)

    def reschedule(self, booking_id: int, new_start: datetime, new_end: datetime, requester: User) -> Booking:
        new_start, new_end = self._validate_window(new_start, new_end)
        self._reject_past(new_start, "Cannot reschedule to a past time")

        booking = self.bookings.find_by_id(booking_id)
        self._authorize(booking, requester)
        self._reject_terminal(booking)
        self._reject_past(booking.start_time, "Cannot reschedule a booking that has already started", booking.id)

        previous_start, previous_end = booking.start_time, booking.end_time
        self.availability.assert_room_free(booking.room_id, new_start, new_end, exclude_booking_id=booking.id)

        booking = self.bookings.update_times(booking.id, new_start, new_end)
        logger.info(
            "Booking %s moved from [%s, %s) to [%s, %s) by user %s",
            booking.id,
            previous_start,
            previous_end,
            new_start,
            new_end,
            requester.id,
        )
        self.event_sink.publish(
            BookingRescheduled(
                booking_id=booking.id,
                room_id=booking.room_id,
                user_id=booking.user_id,
                start_time=booking.start_time,
                end_time=booking.end_time,
                previous_start_time=previous_start,
                previous_end_time=previous_end,
            )
        )
        return booking

    def cancel(self, booking_id: int, requester: User) -> Booking:
        booking = self.bookings.find_by_id(booking_id)
        self._authorize(booking, requester)
        self._reject_terminal(booking)
        self._reject_past(booking.start_time, "Cannot cancel a booking that has already started", booking.id)

        booking = self.bookings.update_status(booking.id, BookingStatus.CANCELLED)
        logger.info("Booking %s cancelled by user %s", booking.id, requester.id)
        self.event_sink.publish(
            BookingCancelled(booking_id=booking.id, room_id=booking.room_id, cancelled_by=requester.id)
        )
        return booking

    # Reads

    def get_booking(self, booking_id: int, requester: User) -> Booking:
        booking = self.bookings.find_by_id(booking_id)
        self._authorize(booking, requester)
        return booking

    def list_for_user(self, user_id: int, params: Optional[BookingQuery] = None) -> List[Booking]:
        return self.bookings.search(params or BookingQuery(), user_id=user_id)

    def list_for_room(self, room_id: int, params: Optional[BookingQuery] = None) -> List[Booking]:
        self.rooms.find_by_id(room_id)
        return self.bookings.search(params or BookingQuery(), room_id=room_id)

    def list_all(self, params: Optional[BookingQuery] = None) -> List[Booking]:
        return self.bookings.search(params or BookingQuery())

    def grouped_by_room(self, params: Optional[BookingQuery] = None) -> List[Dict[str, object]]:
        """Bookings bucketed per room, in the order rooms first appear."""

        groups: Dict[int, Dict[str, object]] = {}
        for booking in self.list_all(params):
            group = groups.setdefault(booking.room_id, {"room": booking.room, "bookings": []})
            group["bookings"].append(booking)  # type: ignore[union-attr]
        return list(groups.values())