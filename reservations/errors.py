"""
Typed failures raised by the availability and booking engine.

Every failure carries a kind from the closed ``ErrorKind`` enumeration and a
structured ``details`` payload; the HTTP layer maps the kind to a status code.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ErrorKind(str, Enum):
    INVALID_WINDOW = "invalid_window"
    DURATION_OUT_OF_RANGE = "duration_out_of_range"
    PAST_BOOKING = "past_booking"
    ROOM_NOT_FOUND = "room_not_found"
    BOOKING_NOT_FOUND = "booking_not_found"
    ROOM_INACTIVE = "room_inactive"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_WINDOW: 400,
    ErrorKind.DURATION_OUT_OF_RANGE: 400,
    ErrorKind.PAST_BOOKING: 400,
    ErrorKind.ROOM_NOT_FOUND: 404,
    ErrorKind.BOOKING_NOT_FOUND: 404,
    ErrorKind.ROOM_INACTIVE: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 409,
}


def _window(start: datetime, end: datetime) -> Dict[str, str]:
    return {"start": start.isoformat(), "end": end.isoformat()}


class BookingEngineError(Exception):
    """Base class for all engine failures."""

    kind: ErrorKind

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.kind.value, "details": self.details}


class InvalidWindowError(BookingEngineError):
    kind = ErrorKind.INVALID_WINDOW

    def __init__(self, start: datetime, end: datetime) -> None:
        super().__init__("Start time must be before end time", _window(start, end))


class DurationOutOfRangeError(BookingEngineError):
    kind = ErrorKind.DURATION_OUT_OF_RANGE

    def __init__(self, start: datetime, end: datetime, min_minutes: int, max_hours: int) -> None:
        super().__init__(
            f"Booking duration must be between {min_minutes} minutes and {max_hours} hours",
            {**_window(start, end), "min_minutes": min_minutes, "max_hours": max_hours},
        )


class PastBookingError(BookingEngineError):
    kind = ErrorKind.PAST_BOOKING

    def __init__(self, message: str, instant: datetime, booking_id: Optional[int] = None) -> None:
        details: Dict[str, Any] = {"instant": instant.isoformat()}
        if booking_id is not None:
            details["booking_id"] = booking_id
        super().__init__(message, details)


class RoomNotFoundError(BookingEngineError):
    kind = ErrorKind.ROOM_NOT_FOUND

    def __init__(self, room_id: int) -> None:
        super().__init__("Room not found", {"room_id": room_id})


class BookingNotFoundError(BookingEngineError):
    kind = ErrorKind.BOOKING_NOT_FOUND

    def __init__(self, booking_id: int) -> None:
        super().__init__("Booking not found", {"booking_id": booking_id})


class RoomInactiveError(BookingEngineError):
    kind = ErrorKind.ROOM_INACTIVE

    def __init__(self, room_id: int) -> None:
        super().__init__("Room is not available for booking", {"room_id": room_id})


class ForbiddenError(BookingEngineError):
    kind = ErrorKind.FORBIDDEN

    def __init__(self, booking_id: int, requester_id: int) -> None:
        super().__init__(
            "Not authorized to modify this booking",
            {"booking_id": booking_id, "requester_id": requester_id},
        )


class BookingConflictError(BookingEngineError):
    """Raised whether the overlap was seen before the write or by the write-time guard."""

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        conflicting_ids: Iterable[int] = (),
    ) -> None:
        super().__init__(
            "Room is already booked during this time",
            {"room_id": room_id, **_window(start, end), "conflicting_booking_ids": sorted(conflicting_ids)},
        )


class BookingStateError(BookingEngineError):
    kind = ErrorKind.INVALID_STATE

    def __init__(self, booking_id: int, status: str) -> None:
        super().__init__(
            f"Booking is {status} and can no longer be changed",
            {"booking_id": booking_id, "status": status},
        )
