"""
Repositories for rooms and bookings.

The engine talks to storage only through the ``BookingRepository`` and
``RoomRepository`` contracts below; the SQLAlchemy classes are the default
implementations used by the services.

Writes that change a booking window re-check for live overlaps inside the
same transaction after flushing, so a conflicting booking committed between
the service's availability check and its write is reported as the same
``BookingConflictError`` instead of producing a double booking.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .errors import BookingConflictError, BookingNotFoundError, RoomNotFoundError
from .models import LIVE_STATUSES, Booking, BookingStatus, Room
from .schemas import BookingQuery
from .timewindow import DayLike, day_bounds

logger = logging.getLogger(__name__)


class BookingRepository(Protocol):
    def find_live_overlapping(
        self, room_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[Booking]:
        ...

    def find_by_room_and_day(self, room_id: int, day: DayLike) -> List[Booking]:
        ...

    def find_all_live_by_day(self, day: DayLike) -> List[Booking]:
        ...

    def find_live_in_range(self, room_id: int, start: datetime, end: datetime) -> List[Booking]:
        ...

    def insert(self, booking: Booking) -> Booking:
        ...

    def update_times(self, booking_id: int, start: datetime, end: datetime) -> Booking:
        ...

    def update_status(self, booking_id: int, status: BookingStatus) -> Booking:
        ...

    def find_by_id(self, booking_id: int) -> Booking:
        ...

    def search(
        self, params: BookingQuery, user_id: Optional[int] = None, room_id: Optional[int] = None
    ) -> List[Booking]:
        ...


class RoomRepository(Protocol):
    def find_by_id(self, room_id: int) -> Room:
        ...

    def find_active(self) -> List[Room]:
        ...

    def find_all(self, include_inactive: bool = False) -> List[Room]:
        ...


class SqlAlchemyRoomRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, room_id: int) -> Room:
        room = self.db.get(Room, room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def find_active(self) -> List[Room]:
        return list(self.db.scalars(select(Room).where(Room.is_active.is_(True)).order_by(Room.name)))

    def find_all(self, include_inactive: bool = False) -> List[Room]:
        query = select(Room).order_by(Room.name)
        if not include_inactive:
            query = query.where(Room.is_active.is_(True))
        return list(self.db.scalars(query))


class SqlAlchemyBookingRepository:
    def __init__(self, db: Session):
        self.db = db

    # Reads

    def _live(self):
        return select(Booking).where(Booking.status.in_(LIVE_STATUSES))

    def find_live_overlapping(
        self, room_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[Booking]:
        query = self._live().where(
            Booking.room_id == room_id,
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_id is not None:
            query = query.where(Booking.id != exclude_id)
        return list(self.db.scalars(query))

    def find_by_room_and_day(self, room_id: int, day: DayLike) -> List[Booking]:
        day_start, day_end = day_bounds(day)
        return self.find_live_in_range(room_id, day_start, day_end)

    def find_all_live_by_day(self, day: DayLike) -> List[Booking]:
        day_start, day_end = day_bounds(day)
        query = (
            self._live()
            .where(Booking.start_time < day_end, Booking.end_time > day_start)
            .order_by(Booking.start_time)
        )
        return list(self.db.scalars(query))

    def find_live_in_range(self, room_id: int, start: datetime, end: datetime) -> List[Booking]:
        query = (
            self._live()
            .where(Booking.room_id == room_id, Booking.start_time < end, Booking.end_time > start)
            .order_by(Booking.start_time)
        )
        return list(self.db.scalars(query))

    def find_by_id(self, booking_id: int) -> Booking:
        booking = self.db.scalar(
            select(Booking)
            .options(selectinload(Booking.room), selectinload(Booking.user))
            .where(Booking.id == booking_id)
        )
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def search(self, params: BookingQuery, user_id: Optional[int] = None, room_id: Optional[int] = None) -> List[Booking]:
        query = select(Booking).options(selectinload(Booking.room), selectinload(Booking.user))
        if user_id is not None:
            query = query.where(Booking.user_id == user_id)
        if room_id is not None:
            query = query.where(Booking.room_id == room_id)
        if params.status is not None:
            query = query.where(Booking.status == params.status)
        if params.from_date is not None:
            query = query.where(Booking.start_time >= params.from_date)
        if params.to_date is not None:
            query = query.where(Booking.end_time <= params.to_date)
        order = Booking.start_time.asc() if room_id is not None else Booking.start_time.desc()
        query = query.order_by(order).offset((params.page - 1) * params.limit).limit(params.limit)
        return list(self.db.scalars(query))

    # Writes

    def insert(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self._commit_guarded(booking)
        logger.info("Inserted booking %s for room %s", booking.id, booking.room_id)
        return booking

    def update_times(self, booking_id: int, start: datetime, end: datetime) -> Booking:
        booking = self.find_by_id(booking_id)
        booking.start_time = start
        booking.end_time = end
        self._commit_guarded(booking)
        return booking

    def update_status(self, booking_id: int, status: BookingStatus) -> Booking:
        booking = self.find_by_id(booking_id)
        booking.status = status
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def _lock_room(self, room_id: int) -> None:
        # Rendered as SELECT ... FOR UPDATE where the dialect supports it.
        self.db.execute(select(Room.id).where(Room.id == room_id).with_for_update())

    def _commit_guarded(self, booking: Booking) -> None:
        # Rollback expires the instance, so keep the requested window around for the error.
        room_id, start, end = booking.room_id, booking.start_time, booking.end_time
        try:
            self._lock_room(room_id)
            self.db.flush()
            clash_ids = [clash.id for clash in self.find_live_overlapping(room_id, start, end, exclude_id=booking.id)]
            if clash_ids:
                self.db.rollback()
                logger.warning(
                    "Write-time conflict for room %s [%s, %s) with bookings %s", room_id, start, end, clash_ids
                )
                raise BookingConflictError(room_id, start, end, clash_ids)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Integrity error while writing booking for room %s: %s", room_id, exc)
            raise BookingConflictError(room_id, start, end) from exc
        self.db.refresh(booking)


def partition_by_room(bookings: Sequence[Booking]) -> Dict[int, List[Booking]]:
    grouped: Dict[int, List[Booking]] = {}
    for booking in bookings:
        grouped.setdefault(booking.room_id, []).append(booking)
    return grouped
