"""Reusable FastAPI dependencies for auth, database access and the booking engine."""
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import decode_token
from .availability import AvailabilityService
from .cache import SimpleTTLCache
from .config import get_settings
from .database import get_db
from .events import BookingEventSink, build_event_sink
from .lifecycle import BookingLifecycleManager, BookingPolicy
from .models import User
from .repositories import SqlAlchemyBookingRepository, SqlAlchemyRoomRepository
from .slots import SlotOptions

settings = get_settings()
oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")

# Process-wide collaborators shared by every request.
slot_grid_cache: SimpleTTLCache = SimpleTTLCache(ttl=settings.slot_grid_cache_ttl)
event_sink: BookingEventSink = build_event_sink(settings)


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.scalar(select(User).where(User.username == username))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User no longer exists")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def get_event_sink() -> BookingEventSink:
    return event_sink


def get_room_repository(db: Session = Depends(get_db)) -> SqlAlchemyRoomRepository:
    return SqlAlchemyRoomRepository(db)


def get_booking_repository(db: Session = Depends(get_db)) -> SqlAlchemyBookingRepository:
    return SqlAlchemyBookingRepository(db)


def get_availability_service(
    rooms: SqlAlchemyRoomRepository = Depends(get_room_repository),
    bookings: SqlAlchemyBookingRepository = Depends(get_booking_repository),
) -> AvailabilityService:
    return AvailabilityService(
        rooms,
        bookings,
        default_options=SlotOptions.from_settings(settings),
        grid_cache=slot_grid_cache,
    )


def get_lifecycle_manager(
    rooms: SqlAlchemyRoomRepository = Depends(get_room_repository),
    bookings: SqlAlchemyBookingRepository = Depends(get_booking_repository),
    availability: AvailabilityService = Depends(get_availability_service),
    sink: BookingEventSink = Depends(get_event_sink),
) -> BookingLifecycleManager:
    return BookingLifecycleManager(
        rooms,
        bookings,
        availability,
        event_sink=sink,
        policy=BookingPolicy.from_settings(settings),
    )
