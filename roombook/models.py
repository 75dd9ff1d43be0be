from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Time
from sqlalchemy.orm import relationship
from .database.db import Base
import datetime


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
    color = Column(String, nullable=False)  # calendar swatch, e.g. "#FFD700"

    bookings = relationship("Booking", back_populates="room")


class Squad(Base):
    __tablename__ = "squads"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    bookings = relationship("Booking", back_populates="squad")


class RecurrenceSeries(Base):
    __tablename__ = "recurrence_series"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    booker_name = Column(String, nullable=True)
    squad_id = Column(Integer, ForeignKey("squads.id"), nullable=True)
    weekdays = Column(String, nullable=False)  # "1,3,5", Sunday = 0
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    first_date = Column(Date, nullable=False)
    last_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    bookings = relationship("Booking", back_populates="series")

    @property
    def weekday_list(self):
        return [int(d) for d in self.weekdays.split(",") if d != ""]


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_start_before_end"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booker_name = Column(String, nullable=True, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    room = relationship("Room", back_populates="bookings")

    squad_id = Column(Integer, ForeignKey("squads.id"), nullable=True)
    squad = relationship("Squad", back_populates="bookings")

    series_id = Column(Integer, ForeignKey("recurrence_series.id"), nullable=True, index=True)
    series = relationship("RecurrenceSeries", back_populates="bookings")


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default="user")
