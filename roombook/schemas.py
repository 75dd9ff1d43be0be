from pydantic import BaseModel, Field, field_validator
from datetime import date, time, datetime
from typing import Literal, Optional, List, Union


class RoomBase(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    color: str = Field(min_length=1)


class RoomCreate(RoomBase):
    pass


class Room(RoomBase):
    id: int

    class Config:
        from_attributes = True


class SquadCreate(BaseModel):
    name: str = Field(min_length=1)


class Squad(SquadCreate):
    id: int

    class Config:
        from_attributes = True


class BookingCreate(BaseModel):
    """Single booking; naive datetimes are local wall-clock time."""
    room_id: int
    booker_name: Optional[str] = None
    squad_id: Optional[int] = None
    start_time: datetime
    end_time: datetime


class RecurringBookingCreate(BaseModel):
    room_id: int
    booker_name: Optional[str] = None
    squad_id: Optional[int] = None
    weekdays: List[int]
    start_time: time
    end_time: time
    first_date: date
    last_date: date

    @field_validator("weekdays")
    @classmethod
    def _weekday_range(cls, value: List[int]) -> List[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError("weekdays must be numbers from 0 (Sunday) to 6 (Saturday)")
        return value


class BookingIds(BaseModel):
    ids: List[int] = Field(min_length=1)


class BookingView(BaseModel):
    kind: Literal["booking"] = "booking"
    id: int
    room_id: int
    room_name: Optional[str] = None
    room_color: Optional[str] = None
    booker_name: Optional[str] = None
    squad_id: Optional[int] = None
    squad_name: Optional[str] = None
    series_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    weekday: int


class SeriesView(BaseModel):
    """Weekly series, either tracked through ``series_id`` or inferred."""
    kind: Literal["series"] = "series"
    series_id: Optional[int] = None
    room_id: int
    room_name: Optional[str] = None
    room_color: Optional[str] = None
    booker_name: Optional[str] = None
    squad_id: Optional[int] = None
    squad_name: Optional[str] = None
    count: int
    weekdays: List[int]
    local_start: time
    local_end: time
    start_time: datetime
    end_time: datetime
    booking_ids: List[int]


ScheduleItem = Union[BookingView, SeriesView]


class CreatedBookings(BaseModel):
    message: str
    series_id: Optional[int] = None
    booking_ids: List[int]


class DeletedBookings(BaseModel):
    message: str
    deleted: int


class RoomStatus(BaseModel):
    room_id: int
    is_available: bool
    current_booking: Optional[BookingView] = None
    busy_until: Optional[datetime] = None
    next_booking: Optional[BookingView] = None
    next_start: Optional[datetime] = None


class CalendarDay(BaseModel):
    day: date
    weekday: int
    bookings: List[BookingView]


class WeekCalendar(BaseModel):
    room_id: int
    week_start: date
    week_end: date
    days: List[CalendarDay]
