"""
Persistence for rooms, squads, bookings and recurrence series.

The repository is the final authority on the no-overlap rule: every insert
re-checks the room's bookings inside the write transaction, and on
PostgreSQL an exclusion constraint backs that check up. Callers get
``ConflictError`` for a lost race and ``PersistenceError`` for anything else
the database rejects.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models
from .clock import as_utc
from .conflicts import Interval
from .errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from .recurrence import RecurrenceSpec
from .requester import Requester

logger = logging.getLogger("roombook.repository")

OVERLAP_CONSTRAINT = "bookings_no_overlap"

POSTGRES_MIGRATIONS = [
    "CREATE EXTENSION IF NOT EXISTS btree_gist",
    f"ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_CONSTRAINT} "
    "EXCLUDE USING gist (room_id WITH =, tstzrange(start_time, end_time) WITH &&)",
]


def install_constraints(db: Session) -> None:
    """Add the storage-level overlap constraint where the database supports it.

    Runs on every start; an existing constraint is left alone. If it cannot be
    installed the service still starts and relies on the in-transaction
    re-check, with a warning in the log.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    installed = db.execute(
        text("SELECT 1 FROM pg_constraint WHERE conname = :name"), {"name": OVERLAP_CONSTRAINT}
    ).first()
    if installed is not None:
        return
    for sql in POSTGRES_MIGRATIONS:
        try:
            db.execute(text(sql))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Overlap constraint %s not installed: %s", OVERLAP_CONSTRAINT, exc)
            return
    logger.info("Installed overlap constraint %s", OVERLAP_CONSTRAINT)


def _is_overlap_violation(exc: Exception) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return OVERLAP_CONSTRAINT in message or "overlaps" in message or "conflicting key" in message


def _booking_query(db: Session):
    return db.query(models.Booking).options(
        joinedload(models.Booking.room), joinedload(models.Booking.squad)
    )


class BookingRepository:
    def __init__(self, db: Session):
        self.db = db

    # ----- rooms -----

    def list_rooms(self) -> List[models.Room]:
        return self.db.query(models.Room).order_by(models.Room.name).all()

    def get_room(self, room_id: int) -> models.Room:
        room = self.db.get(models.Room, room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} does not exist")
        return room

    def create_room(self, name: str, color: str, description: Optional[str] = None) -> models.Room:
        room = models.Room(name=name, description=description, color=color)
        self.db.add(room)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError(f"A room named {name!r} already exists")
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Creating room %r failed", name)
            raise PersistenceError(f"Could not create room: {exc}")
        self.db.refresh(room)
        logger.info("Room %s (%s) created", room.id, room.name)
        return room

    def delete_room(self, room_id: int) -> None:
        room = self.get_room(room_id)
        in_use = self.db.query(models.Booking).filter(models.Booking.room_id == room_id).count()
        if in_use:
            raise ValidationError(f"Room {room.name!r} still has {in_use} booking(s)")
        self.db.delete(room)
        self._commit("delete room")
        logger.info("Room %s deleted", room_id)

    # ----- squads -----

    def list_squads(self) -> List[models.Squad]:
        return self.db.query(models.Squad).order_by(models.Squad.name).all()

    def get_squad(self, squad_id: int) -> models.Squad:
        squad = self.db.get(models.Squad, squad_id)
        if squad is None:
            raise NotFoundError(f"Squad {squad_id} does not exist")
        return squad

    def create_squad(self, name: str) -> models.Squad:
        squad = models.Squad(name=name)
        self.db.add(squad)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError(f"A squad named {name!r} already exists")
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Creating squad %r failed", name)
            raise PersistenceError(f"Could not create squad: {exc}")
        self.db.refresh(squad)
        logger.info("Squad %s (%s) created", squad.id, squad.name)
        return squad

    def delete_squad(self, squad_id: int) -> None:
        squad = self.get_squad(squad_id)
        in_use = self.db.query(models.Booking).filter(models.Booking.squad_id == squad_id).count()
        if in_use:
            raise ValidationError(f"Squad {squad.name!r} still has {in_use} booking(s)")
        self.db.delete(squad)
        self._commit("delete squad")

    # ----- roles -----

    def get_role(self, user_id: str) -> Optional[str]:
        row = self.db.query(models.UserRole).filter_by(user_id=user_id).first()
        return row.role if row else None

    def set_role(self, user_id: str, role: str) -> None:
        row = self.db.query(models.UserRole).filter_by(user_id=user_id).first()
        if row is None:
            self.db.add(models.UserRole(user_id=user_id, role=role))
        else:
            row.role = role
        self._commit("set role")

    # ----- bookings -----

    def list_bookings_for_room(self, room_id: int, from_instant: datetime) -> List[models.Booking]:
        """Bookings of one room still running at or after ``from_instant``, by start."""
        return (
            _booking_query(self.db)
            .filter(
                models.Booking.room_id == room_id,
                models.Booking.end_time >= as_utc(from_instant),
            )
            .order_by(models.Booking.start_time)
            .all()
        )

    def list_bookings(self, from_instant: datetime) -> List[models.Booking]:
        return (
            _booking_query(self.db)
            .filter(models.Booking.end_time >= as_utc(from_instant))
            .order_by(models.Booking.start_time, models.Booking.room_id)
            .all()
        )

    def list_bookings_between(self, room_id: int, start: datetime, end: datetime) -> List[models.Booking]:
        return (
            _booking_query(self.db)
            .filter(
                models.Booking.room_id == room_id,
                models.Booking.start_time < as_utc(end),
                models.Booking.end_time > as_utc(start),
            )
            .order_by(models.Booking.start_time)
            .all()
        )

    def series_booking_ids(self, series_id: int) -> List[int]:
        if self.db.get(models.RecurrenceSeries, series_id) is None:
            raise NotFoundError(f"Series {series_id} does not exist")
        rows = (
            self.db.query(models.Booking.id)
            .filter(models.Booking.series_id == series_id)
            .order_by(models.Booking.id)
            .all()
        )
        return [row.id for row in rows]

    def _overlapping(self, room_id: int, interval: Interval):
        return (
            self.db.query(models.Booking)
            .filter(
                models.Booking.room_id == room_id,
                models.Booking.start_time < interval.end,
                models.Booking.end_time > interval.start,
            )
            .first()
        )

    def insert_bookings(
        self,
        room_id: int,
        requester: Requester,
        intervals: Sequence[Interval],
        recurrence: Optional[RecurrenceSpec] = None,
    ) -> List[models.Booking]:
        """Insert every interval for ``room_id`` in one transaction, or none of them.

        When ``recurrence`` is given a ``RecurrenceSeries`` row is created in
        the same transaction and every booking points to it.
        """
        if not intervals:
            raise ValidationError("Nothing to book")
        try:
            # serializes concurrent writers for the room where the dialect supports it
            self.db.query(models.Room).filter(models.Room.id == room_id).with_for_update().first()

            ordered = sorted(intervals, key=lambda i: i.start)
            for previous, current in zip(ordered, ordered[1:]):
                if current.overlaps(previous):
                    raise ConflictError("The requested bookings overlap each other", [previous, current])
            clashes = [i for i in ordered if self._overlapping(room_id, i) is not None]
            if clashes:
                raise ConflictError(conflicts=clashes)

            series_id = None
            if recurrence is not None:
                series = models.RecurrenceSeries(
                    room_id=room_id,
                    booker_name=requester.booker_name,
                    squad_id=requester.squad_id,
                    weekdays=",".join(str(d) for d in sorted(recurrence.weekdays)),
                    start_time=recurrence.start_time,
                    end_time=recurrence.end_time,
                    first_date=recurrence.first_date,
                    last_date=recurrence.last_date,
                )
                self.db.add(series)
                self.db.flush()
                series_id = series.id

            rows = [
                models.Booking(
                    room_id=room_id,
                    booker_name=requester.booker_name,
                    squad_id=requester.squad_id,
                    start_time=interval.start,
                    end_time=interval.end,
                    series_id=series_id,
                )
                for interval in ordered
            ]
            self.db.add_all(rows)
            self.db.commit()
        except ConflictError:
            self.db.rollback()
            logger.info("Insert of %d booking(s) for room %s rejected: overlap", len(intervals), room_id)
            raise
        except IntegrityError as exc:
            self.db.rollback()
            if _is_overlap_violation(exc):
                logger.info("Insert for room %s rejected by the overlap constraint", room_id)
                raise ConflictError()
            logger.exception("Insert for room %s violated a constraint", room_id)
            raise PersistenceError(f"Could not save booking: {exc.orig}")
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Insert for room %s failed", room_id)
            raise PersistenceError(f"Could not save booking: {exc}")

        for row in rows:
            self.db.refresh(row)
        logger.info(
            "Created %d booking(s) for room %s (series=%s)",
            len(rows), room_id, series_id,
        )
        return rows

    def delete_bookings(self, ids: Iterable[int]) -> int:
        """Delete the given bookings; ids that do not exist are ignored."""
        ids = sorted(set(ids))
        if not ids:
            return 0
        try:
            series_ids = {
                row.series_id
                for row in self.db.query(models.Booking.series_id)
                .filter(models.Booking.id.in_(ids), models.Booking.series_id.isnot(None))
                .all()
            }
            deleted = (
                self.db.query(models.Booking)
                .filter(models.Booking.id.in_(ids))
                .delete(synchronize_session=False)
            )
            if series_ids:
                self._drop_empty_series(series_ids)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Deleting bookings %s failed", ids)
            raise PersistenceError(f"Could not delete bookings: {exc}")
        logger.info("Deleted %d booking(s)", deleted)
        return deleted

    def _drop_empty_series(self, series_ids) -> None:
        still_used = {
            row.series_id
            for row in self.db.query(models.Booking.series_id)
            .filter(models.Booking.series_id.in_(series_ids))
            .distinct()
            .all()
        }
        empty = set(series_ids) - still_used
        if empty:
            self.db.query(models.RecurrenceSeries).filter(
                models.RecurrenceSeries.id.in_(empty)
            ).delete(synchronize_session=False)

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Could not %s", action)
            raise PersistenceError(f"Could not {action}: {exc}")
