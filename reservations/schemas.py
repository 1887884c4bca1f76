"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, computed_field, field_validator

from .models import BookingStatus, RoleEnum
from .timewindow import to_local_naive


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.USER


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    model_config = {"from_attributes": True}


class RoomBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    capacity: int = Field(..., gt=0)
    amenities: List[str] = Field(default_factory=list)
    location: str = ""
    description: Optional[str] = None
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Room name must not be blank")
        return value


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    capacity: Optional[int] = Field(None, gt=0)
    amenities: Optional[List[str]] = None
    location: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class RoomRead(RoomBase):
    id: int

    model_config = {"from_attributes": True}


class RoomSummary(BaseModel):
    id: int
    name: str
    capacity: int
    amenities: List[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class BookingWindow(BaseModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return to_local_naive(value)


class BookingCreate(BookingWindow):
    room_id: int


class BookingReschedule(BookingWindow):
    pass


class AvailabilityCheck(BookingWindow):
    room_id: int
    exclude_booking_id: Optional[int] = None


class BookingRead(BaseModel):
    id: int
    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    room: Optional[RoomSummary] = None
    user: Optional[UserSummary] = None

    model_config = {"from_attributes": True}


class BookingQuery(BaseModel):
    """Filters for booking listings."""

    status: Optional[BookingStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=200)
    page: int = Field(default=1, ge=1)


class SlotRead(BaseModel):
    start: datetime
    end: datetime
    duration_minutes: int

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def start_label(self) -> str:
        return self.start.strftime("%H:%M")

    @computed_field
    @property
    def end_label(self) -> str:
        return self.end.strftime("%H:%M")


class RoomAvailabilityRead(BaseModel):
    room: RoomSummary
    day_key: str
    slots: List[SlotRead]
    total_available_slots: int
    is_available: bool
    total_bookings: int
    next_available_slot: Optional[datetime] = None
    last_available_slot: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RoomOccupancyRead(BaseModel):
    room: RoomSummary
    start_day: date
    end_day: date
    booked_hours: float
    business_hours: float
    occupancy_rate: float
    bookings: List[BookingRead]

    model_config = {"from_attributes": True}


class GroupedBookingsRead(BaseModel):
    room: RoomSummary
    bookings: List[BookingRead]


class AvailabilityResult(BaseModel):
    room_id: int
    is_available: bool
    start_time: datetime
    end_time: datetime
