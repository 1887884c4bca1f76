import os
from datetime import date, datetime, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("EVENTS_BACKEND", "memory")

from reservations.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from reservations import dependencies  # noqa: E402
from reservations.auth import get_password_hash  # noqa: E402
from reservations.database import Base, SessionLocal, engine  # noqa: E402
from reservations.models import RoleEnum, Room, User  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.rooms.app import app as rooms_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    dependencies.slot_grid_cache.clear()
    dependencies.event_sink.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def future_day() -> date:
    """A Wednesday comfortably in the future."""

    day = date.today() + timedelta(days=14)
    return day + timedelta(days=(2 - day.weekday()) % 7)


@pytest.fixture()
def at(future_day):
    def _at(hour: int, minute: int = 0) -> datetime:
        return datetime.combine(future_day, datetime.min.time()) + timedelta(hours=hour, minutes=minute)

    return _at


def _make_user(db_session, username: str, role: RoleEnum) -> User:
    user = User(
        name=username.title(),
        username=username,
        email=f"{username}@example.com",
        role=role,
        hashed_password=get_password_hash("Passw0rd!"),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def alice(db_session) -> User:
    return _make_user(db_session, "alice", RoleEnum.USER)


@pytest.fixture()
def bob(db_session) -> User:
    return _make_user(db_session, "bob", RoleEnum.USER)


@pytest.fixture()
def admin(db_session) -> User:
    return _make_user(db_session, "admin", RoleEnum.ADMIN)


@pytest.fixture()
def room(db_session) -> Room:
    room = Room(name="Focus Room", capacity=6, amenities=["tv"], location="Floor 2")
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client
