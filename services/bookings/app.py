from typing import List

from fastapi import Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reservations.app_factory import create_service_app
from reservations.availability import AvailabilityService
from reservations.database import get_db
from reservations.dependencies import get_availability_service, get_current_user, get_lifecycle_manager, require_admin
from reservations.lifecycle import BookingLifecycleManager
from reservations.models import LIVE_STATUSES, Booking, Room, User
from reservations.rate_limit import limiter
from reservations.schemas import (
    AvailabilityCheck,
    AvailabilityResult,
    BookingCreate,
    BookingQuery,
    BookingRead,
    BookingReschedule,
    GroupedBookingsRead,
    RoomSummary,
)

app = create_service_app("Bookings Service", "bookings")


def _read(bookings: List[Booking]) -> List[BookingRead]:
    return [BookingRead.model_validate(booking) for booking in bookings]


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> BookingRead:
    booking = manager.create(booking_in.room_id, booking_in.start_time, booking_in.end_time, current_user)
    return BookingRead.model_validate(booking)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_my_bookings(
    request: Request,
    params: BookingQuery = Depends(),
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> List[BookingRead]:
    return _read(manager.list_for_user(current_user.id, params))


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    params: BookingQuery = Depends(),
    _: User = Depends(require_admin),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> List[BookingRead]:
    return _read(manager.list_all(params))


@app.get("/bookings/grouped", response_model=List[GroupedBookingsRead])
@limiter.limit("30/minute")
def list_bookings_grouped_by_room(
    request: Request,
    params: BookingQuery = Depends(),
    _: User = Depends(require_admin),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> List[GroupedBookingsRead]:
    return [
        GroupedBookingsRead(room=RoomSummary.model_validate(group["room"]), bookings=_read(group["bookings"]))
        for group in manager.grouped_by_room(params)
    ]


@app.post("/bookings/availability", response_model=AvailabilityResult)
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    check: AvailabilityCheck,
    availability: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResult:
    is_free = availability.is_room_free(check.room_id, check.start_time, check.end_time, check.exclude_booking_id)
    return AvailabilityResult(
        room_id=check.room_id,
        is_available=is_free,
        start_time=check.start_time,
        end_time=check.end_time,
    )


@app.get("/bookings/rooms/{room_id}", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_room_bookings(
    request: Request,
    room_id: int,
    params: BookingQuery = Depends(),
    _: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> List[BookingRead]:
    return _read(manager.list_for_room(room_id, params))


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> BookingRead:
    return BookingRead.model_validate(manager.get_booking(booking_id, current_user))


@app.put("/bookings/{booking_id}/reschedule", response_model=BookingRead)
@limiter.limit("20/minute")
def reschedule_booking(
    request: Request,
    booking_id: int,
    window: BookingReschedule,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> BookingRead:
    booking = manager.reschedule(booking_id, window.start_time, window.end_time, current_user)
    return BookingRead.model_validate(booking)


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> BookingRead:
    return BookingRead.model_validate(manager.cancel(booking_id, current_user))


@app.get("/analytics/rooms/popularity")
@limiter.limit("30/minute")
def room_popularity(
    request: Request,
    limit: int = Query(5, ge=1, le=25),
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[dict[str, int | str]]:
    booking_count = func.count(Booking.id)
    rows = db.execute(
        select(Room.id, Room.name, booking_count)
        .outerjoin(Booking, (Booking.room_id == Room.id) & Booking.status.in_(LIVE_STATUSES))
        .group_by(Room.id, Room.name)
        .order_by(booking_count.desc(), Room.name)
        .limit(limit)
    ).all()
    return [
        {"room_id": room_id, "room_name": room_name, "booking_count": count}
        for room_id, room_name, count in rows
    ]
