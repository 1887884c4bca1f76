from datetime import datetime, timedelta, timezone
from itertools import combinations

import pytest

from reservations.availability import AvailabilityService
from reservations.errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingStateError,
    DurationOutOfRangeError,
    ErrorKind,
    ForbiddenError,
    InvalidWindowError,
    PastBookingError,
    RoomInactiveError,
    RoomNotFoundError,
)
from reservations.events import InMemoryEventSink
from reservations.lifecycle import BookingLifecycleManager, BookingPolicy
from reservations.models import Booking, BookingStatus, Room
from reservations.repositories import SqlAlchemyBookingRepository, SqlAlchemyRoomRepository
from reservations.schemas import BookingQuery
from reservations.timewindow import overlaps


@pytest.fixture()
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


def build_manager(db_session, sink, clock=datetime.now) -> BookingLifecycleManager:
    rooms = SqlAlchemyRoomRepository(db_session)
    bookings = SqlAlchemyBookingRepository(db_session)
    return BookingLifecycleManager(
        rooms,
        bookings,
        AvailabilityService(rooms, bookings),
        event_sink=sink,
        policy=BookingPolicy(),
        clock=clock,
    )


@pytest.fixture()
def manager(db_session, sink) -> BookingLifecycleManager:
    return build_manager(db_session, sink)


def live_windows(db_session, room_id):
    bookings = db_session.query(Booking).filter(Booking.room_id == room_id).all()
    return [(b.start_time, b.end_time) for b in bookings if b.is_live]


class TestCreate:
    def test_creates_confirmed_booking(self, manager, room, alice, at, sink):
        booking = manager.create(room.id, at(14), at(15), alice)

        assert booking.id is not None
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.user_id == alice.id
        assert booking.room.name == room.name
        assert booking.user.email == alice.email
        assert sink.names() == ["booking-created"]
        assert sink.events[0].booking_id == booking.id

    def test_inverted_window(self, manager, room, alice, at):
        with pytest.raises(InvalidWindowError):
            manager.create(room.id, at(15), at(14), alice)

    def test_zero_length_window(self, manager, room, alice, at):
        with pytest.raises(InvalidWindowError):
            manager.create(room.id, at(15), at(15), alice)

    def test_twenty_nine_minutes_is_too_short(self, manager, room, alice, at):
        with pytest.raises(DurationOutOfRangeError):
            manager.create(room.id, at(14), at(14, 29), alice)

    def test_thirty_minutes_is_accepted(self, manager, room, alice, at):
        booking = manager.create(room.id, at(14), at(14, 30), alice)
        assert booking.status == BookingStatus.CONFIRMED

    def test_more_than_five_days_is_too_long(self, manager, room, alice, at):
        with pytest.raises(DurationOutOfRangeError):
            manager.create(room.id, at(9), at(9) + timedelta(hours=120, minutes=1), alice)

    def test_start_one_second_ago_is_past(self, db_session, sink, room, alice):
        now = datetime.now()
        manager = build_manager(db_session, sink, clock=lambda: now)
        with pytest.raises(PastBookingError):
            manager.create(room.id, now - timedelta(seconds=1), now + timedelta(hours=1), alice)

    def test_start_one_second_ahead_is_accepted(self, db_session, sink, room, alice):
        now = datetime.now()
        manager = build_manager(db_session, sink, clock=lambda: now)
        booking = manager.create(room.id, now + timedelta(seconds=1), now + timedelta(hours=1), alice)
        assert booking.id is not None

    def test_missing_room(self, manager, alice, at):
        with pytest.raises(RoomNotFoundError):
            manager.create(404, at(14), at(15), alice)

    def test_inactive_room(self, manager, db_session, room, alice, at):
        room.is_active = False
        db_session.commit()
        with pytest.raises(RoomInactiveError):
            manager.create(room.id, at(14), at(15), alice)

    def test_overlap_is_a_conflict(self, manager, room, alice, bob, at, sink):
        first = manager.create(room.id, at(14), at(15), alice)
        with pytest.raises(BookingConflictError) as exc_info:
            manager.create(room.id, at(14, 30), at(15, 30), bob)

        assert exc_info.value.kind is ErrorKind.CONFLICT
        assert exc_info.value.details["conflicting_booking_ids"] == [first.id]
        assert sink.names() == ["booking-created"]

    def test_back_to_back_bookings(self, manager, room, alice, bob, at):
        manager.create(room.id, at(14), at(15), alice)
        booking = manager.create(room.id, at(15), at(16), bob)
        assert booking.start_time == at(15)

    def test_aware_window_is_stored_as_local_wall_clock(self, manager, room, alice, at):
        start = at(14).astimezone(timezone.utc)
        booking = manager.create(room.id, start, start + timedelta(hours=1), alice)

        assert booking.start_time == at(14)
        assert booking.start_time.tzinfo is None

    def test_aware_past_start_is_a_typed_error(self, manager, room, alice):
        start = datetime.now(timezone.utc) - timedelta(hours=1)
        with pytest.raises(PastBookingError):
            manager.create(room.id, start, start + timedelta(hours=1), alice)


class TestReschedule:
    def test_moves_window_in_place(self, manager, room, alice, at, sink):
        booking = manager.create(room.id, at(14), at(15), alice)
        moved = manager.reschedule(booking.id, at(16), at(17), alice)

        assert moved.id == booking.id
        assert (moved.start_time, moved.end_time) == (at(16), at(17))
        assert moved.status == BookingStatus.CONFIRMED
        assert sink.names() == ["booking-created", "booking-rescheduled"]
        assert sink.events[-1].previous_start_time == at(14)

    def test_overlapping_only_itself_succeeds(self, manager, room, alice, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        moved = manager.reschedule(booking.id, at(14, 30), at(15, 30), alice)
        assert moved.start_time == at(14, 30)

    def test_conflict_with_another_booking(self, manager, room, alice, bob, at):
        mine = manager.create(room.id, at(14), at(15), alice)
        manager.create(room.id, at(16), at(17), bob)
        with pytest.raises(BookingConflictError):
            manager.reschedule(mine.id, at(15, 30), at(16, 30), alice)

    def test_missing_booking(self, manager, alice, at):
        with pytest.raises(BookingNotFoundError):
            manager.reschedule(12345, at(14), at(15), alice)

    def test_stranger_is_forbidden(self, manager, room, alice, bob, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        with pytest.raises(ForbiddenError):
            manager.reschedule(booking.id, at(16), at(17), bob)

    def test_admin_may_move_any_booking(self, manager, room, alice, admin, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        moved = manager.reschedule(booking.id, at(16), at(17), admin)
        assert moved.user_id == alice.id

    def test_validates_new_window_first(self, manager, room, alice, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        with pytest.raises(DurationOutOfRangeError):
            manager.reschedule(booking.id, at(16), at(16, 10), alice)
        with pytest.raises(InvalidWindowError):
            manager.reschedule(booking.id, at(17), at(16), alice)

    def test_cannot_move_into_the_past(self, manager, room, alice, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        past = datetime.now() - timedelta(hours=2)
        with pytest.raises(PastBookingError):
            manager.reschedule(booking.id, past, past + timedelta(hours=1), alice)

    def test_started_booking_cannot_move(self, db_session, sink, room, alice, at):
        early = build_manager(db_session, sink)
        booking = early.create(room.id, at(14), at(15), alice)

        later = build_manager(db_session, sink, clock=lambda: at(14, 10))
        with pytest.raises(PastBookingError):
            later.reschedule(booking.id, at(16), at(17), alice)

    def test_cancelled_booking_cannot_move(self, manager, room, alice, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        manager.cancel(booking.id, alice)
        with pytest.raises(BookingStateError):
            manager.reschedule(booking.id, at(16), at(17), alice)


class TestCancel:
    def test_cancel_keeps_window_for_audit(self, manager, room, alice, at, sink):
        booking = manager.create(room.id, at(14), at(15), alice)
        cancelled = manager.cancel(booking.id, alice)

        assert cancelled.status == BookingStatus.CANCELLED
        assert (cancelled.start_time, cancelled.end_time) == (at(14), at(15))
        assert sink.names()[-1] == "booking-cancelled"

    def test_cancel_frees_the_window(self, manager, room, alice, bob, at):
        first = manager.create(room.id, at(14), at(15), alice)
        with pytest.raises(BookingConflictError):
            manager.create(room.id, at(14, 30), at(15, 30), bob)

        manager.cancel(first.id, alice)
        second = manager.create(room.id, at(14, 30), at(15, 30), bob)
        assert second.status == BookingStatus.CONFIRMED

    def test_stranger_is_forbidden(self, manager, room, alice, bob, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        with pytest.raises(ForbiddenError):
            manager.cancel(booking.id, bob)

    def test_admin_may_cancel(self, manager, room, alice, admin, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        assert manager.cancel(booking.id, admin).status == BookingStatus.CANCELLED

    def test_cancel_twice(self, manager, room, alice, at):
        booking = manager.create(room.id, at(14), at(15), alice)
        manager.cancel(booking.id, alice)
        with pytest.raises(BookingStateError):
            manager.cancel(booking.id, alice)

    def test_started_booking_cannot_be_cancelled(self, db_session, sink, room, alice, at):
        booking = build_manager(db_session, sink).create(room.id, at(14), at(15), alice)
        later = build_manager(db_session, sink, clock=lambda: at(14, 1))
        with pytest.raises(PastBookingError):
            later.cancel(booking.id, alice)

    def test_missing_booking(self, manager, alice):
        with pytest.raises(BookingNotFoundError):
            manager.cancel(777, alice)


class TestWriteTimeGuard:
    def test_conflict_slipped_in_after_check_is_reported_as_conflict(self, db_session, room, alice, bob, at):
        repository = SqlAlchemyBookingRepository(db_session)
        # Simulates a competing request that committed between the availability check and the write.
        db_session.add(Booking(room_id=room.id, user_id=bob.id, start_time=at(14), end_time=at(15)))
        db_session.commit()

        with pytest.raises(BookingConflictError) as exc_info:
            repository.insert(Booking(room_id=room.id, user_id=alice.id, start_time=at(14, 30), end_time=at(15, 30)))

        assert exc_info.value.kind is ErrorKind.CONFLICT
        assert len(live_windows(db_session, room.id)) == 1

    def test_update_times_is_guarded(self, db_session, room, alice, bob, at):
        repository = SqlAlchemyBookingRepository(db_session)
        mine = repository.insert(Booking(room_id=room.id, user_id=alice.id, start_time=at(9), end_time=at(10)))
        repository.insert(Booking(room_id=room.id, user_id=bob.id, start_time=at(11), end_time=at(12)))

        with pytest.raises(BookingConflictError):
            repository.update_times(mine.id, at(11, 30), at(12, 30))

        reloaded = repository.find_by_id(mine.id)
        assert (reloaded.start_time, reloaded.end_time) == (at(9), at(10))


class TestNoDoubleBooking:
    def test_live_bookings_never_overlap(self, manager, db_session, room, alice, bob, at):
        requests = [
            ("create", alice, 9, 0, 10, 0),
            ("create", bob, 9, 30, 10, 30),
            ("create", bob, 10, 0, 11, 0),
            ("create", alice, 10, 30, 12, 0),
            ("create", alice, 12, 0, 13, 0),
            ("move-first", alice, 10, 0, 11, 0),
            ("move-first", alice, 13, 0, 14, 0),
            ("create", bob, 9, 0, 9, 30),
        ]
        created = []
        for action, user, sh, sm, eh, em in requests:
            try:
                if action == "create":
                    created.append(manager.create(room.id, at(sh, sm), at(eh, em), user))
                else:
                    manager.reschedule(created[0].id, at(sh, sm), at(eh, em), user)
            except BookingConflictError:
                continue

        windows = live_windows(db_session, room.id)
        assert len(windows) >= 3
        for first, second in combinations(windows, 2):
            assert not overlaps(*first, *second)


class TestReads:
    def test_get_booking_requires_owner_or_admin(self, manager, room, alice, bob, admin, at):
        booking = manager.create(room.id, at(14), at(15), alice)

        assert manager.get_booking(booking.id, alice).id == booking.id
        assert manager.get_booking(booking.id, admin).id == booking.id
        with pytest.raises(ForbiddenError):
            manager.get_booking(booking.id, bob)

    def test_list_for_user_filters_by_status(self, manager, room, alice, bob, at):
        kept = manager.create(room.id, at(9), at(10), alice)
        dropped = manager.create(room.id, at(11), at(12), alice)
        manager.create(room.id, at(13), at(14), bob)
        manager.cancel(dropped.id, alice)

        mine = manager.list_for_user(alice.id)
        confirmed = manager.list_for_user(alice.id, BookingQuery(status=BookingStatus.CONFIRMED))

        assert {booking.id for booking in mine} == {kept.id, dropped.id}
        assert [booking.id for booking in confirmed] == [kept.id]

    def test_list_for_room_is_chronological(self, manager, room, alice, at):
        late = manager.create(room.id, at(15), at(16), alice)
        early = manager.create(room.id, at(9), at(10), alice)
        assert [booking.id for booking in manager.list_for_room(room.id)] == [early.id, late.id]

    def test_list_for_missing_room(self, manager):
        with pytest.raises(RoomNotFoundError):
            manager.list_for_room(999)

    def test_pagination(self, manager, room, alice, at):
        for hour in (9, 11, 13):
            manager.create(room.id, at(hour), at(hour + 1), alice)
        page_two = manager.list_all(BookingQuery(limit=2, page=2))
        assert len(page_two) == 1

    def test_grouped_by_room(self, manager, db_session, room, alice, at):
        atrium = Room(name="Atrium", capacity=20, amenities=["projector"])
        db_session.add(atrium)
        db_session.commit()
        manager.create(room.id, at(9), at(10), alice)
        manager.create(room.id, at(11), at(12), alice)
        manager.create(atrium.id, at(9), at(10), alice)

        groups = {group["room"].name: group["bookings"] for group in manager.grouped_by_room()}
        assert len(groups["Focus Room"]) == 2
        assert len(groups["Atrium"]) == 1
