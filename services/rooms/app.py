from datetime import date
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, HTTPException, Query, Request, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from reservations.app_factory import create_service_app
from reservations.availability import AvailabilityService
from reservations.config import get_settings
from reservations.database import get_db
from reservations.dependencies import get_availability_service, require_admin
from reservations.models import Room, User
from reservations.rate_limit import limiter
from reservations.schemas import RoomAvailabilityRead, RoomCreate, RoomOccupancyRead, RoomRead, RoomUpdate
from reservations.slots import SlotOptions
from reservations.timewindow import parse_day_key

settings = get_settings()
app = create_service_app("Rooms Service", "rooms")


def _get_room_or_404(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def _ensure_unique_name(db: Session, name: str, room_id: Optional[int] = None) -> None:
    query = select(Room.id).where(Room.name == name)
    if room_id is not None:
        query = query.where(Room.id != room_id)
    if db.scalar(query) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room name already exists")


def _day_param(value: str) -> date:
    try:
        return parse_day_key(value)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def slot_options(
    opening_hour: Optional[int] = Query(None, ge=0, le=23),
    closing_hour: Optional[int] = Query(None, ge=1, le=24),
    slot_minutes: Optional[int] = Query(None, gt=0),
    include_fully_booked: bool = False,
) -> SlotOptions:
    try:
        return SlotOptions.from_settings(
            settings,
            opening_hour=opening_hour,
            closing_hour=closing_hour,
            slot_minutes=slot_minutes,
            include_fully_booked=include_fully_booked,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail="closing_hour must be after opening_hour") from exc


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Room:
    _ensure_unique_name(db, room_in.name)
    room = Room(**room_in.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@app.get("/rooms", response_model=List[RoomRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_rooms(
    capacity: Optional[int] = None,
    location: Optional[str] = None,
    amenities: Optional[List[str]] = Query(default=None),
    db: Session = Depends(get_db),
) -> List[Room]:
    query = select(Room).where(Room.is_active.is_(True)).order_by(Room.name)
    if capacity:
        query = query.where(Room.capacity >= capacity)
    if location:
        query = query.where(Room.location.ilike(f"%{location}%"))
    rooms = list(db.scalars(query))
    if amenities:
        wanted = set(amenities)
        rooms = [room for room in rooms if wanted.issubset(set(room.amenities or []))]
    return rooms


@app.get("/rooms/availability", response_model=List[RoomAvailabilityRead])
@limiter.limit("40/minute")
def all_rooms_availability(
    request: Request,
    day: str = Query(..., alias="date"),
    options: SlotOptions = Depends(slot_options),
    availability: AvailabilityService = Depends(get_availability_service),
) -> List[RoomAvailabilityRead]:
    results = availability.free_slots_for_all_active_rooms(_day_param(day), options)
    return [RoomAvailabilityRead.model_validate(result) for result in results]


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(request: Request, room_id: int, db: Session = Depends(get_db)) -> Room:
    return _get_room_or_404(db, room_id)


@app.get("/rooms/{room_id}/availability", response_model=RoomAvailabilityRead)
@limiter.limit("40/minute")
def room_availability(
    request: Request,
    room_id: int,
    day: str = Query(..., alias="date"),
    options: SlotOptions = Depends(slot_options),
    availability: AvailabilityService = Depends(get_availability_service),
) -> RoomAvailabilityRead:
    return RoomAvailabilityRead.model_validate(availability.free_slots_for_room(room_id, _day_param(day), options))


@app.get("/rooms/{room_id}/availability/audit", response_model=RoomAvailabilityRead)
@limiter.limit("40/minute")
def audit_room_availability(
    request: Request,
    room_id: int,
    day: str = Query(..., alias="date"),
    options: SlotOptions = Depends(slot_options),
    _: User = Depends(require_admin),
    availability: AvailabilityService = Depends(get_availability_service),
) -> RoomAvailabilityRead:
    audit_options = options.model_copy(update={"include_inactive": True})
    return RoomAvailabilityRead.model_validate(availability.free_slots_for_room(room_id, _day_param(day), audit_options))


@app.get("/rooms/{room_id}/occupancy", response_model=RoomOccupancyRead)
@limiter.limit("20/minute")
def room_occupancy(
    request: Request,
    room_id: int,
    start_date: str = Query(...),
    end_date: str = Query(...),
    _: User = Depends(require_admin),
    availability: AvailabilityService = Depends(get_availability_service),
) -> RoomOccupancyRead:
    occupancy = availability.room_occupancy(room_id, _day_param(start_date), _day_param(end_date))
    return RoomOccupancyRead.model_validate(occupancy)


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("15/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Room:
    room = _get_room_or_404(db, room_id)
    update_data = room_update.model_dump(exclude_unset=True)
    if "name" in update_data:
        _ensure_unique_name(db, update_data["name"], room_id)
    for key, value in update_data.items():
        setattr(room, key, value)
    db.commit()
    db.refresh(room)
    return room


@app.post("/rooms/{room_id}/deactivate", response_model=RoomRead)
@limiter.limit("15/minute")
def deactivate_room(
    request: Request,
    room_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Room:
    room = _get_room_or_404(db, room_id)
    room.is_active = False
    db.commit()
    db.refresh(room)
    return room


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_room(
    request: Request,
    room_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    room = _get_room_or_404(db, room_id)
    db.delete(room)
    db.commit()
