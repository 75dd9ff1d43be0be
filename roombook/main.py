"""JSON API of the room booking service.

Anyone can list rooms, schedules and room status; creating and deleting
rooms, squads and bookings requires an admin session (see ``auth``). Domain
errors from the booking core are translated to HTTP responses here:

  - ``ValidationError``: 400 (404 when a referenced record is missing)
  - ``ConflictError``: 409, with the clashing intervals
  - ``PersistenceError``: 503
"""
import logging
import os
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import schemas
from .auth import ADMIN_ROLE, require_admin
from .clock import get_normalizer
from .config import get_log_level, get_series_threshold, load_environment
from .database.db import Base, engine, get_db
from .errors import BookingError, ConflictError, NotFoundError, PersistenceError, ValidationError
from .recurrence import RecurrenceSpec
from .repository import BookingRepository, install_constraints
from .requester import Requester
from .services import BookingService

load_environment()

logger = logging.getLogger("roombook")
logging.basicConfig(level=get_log_level(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


def _str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def get_repository(db: Session = Depends(get_db)) -> BookingRepository:
    return BookingRepository(db)


def get_service(repository: BookingRepository = Depends(get_repository)) -> BookingService:
    return BookingService(repository, get_normalizer(), get_series_threshold())


# ---------------------------------------------------------------------------
# App FastAPI
# ---------------------------------------------------------------------------
app = FastAPI(title="Room Booking")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, ConflictError):
        status_code = 409
    elif isinstance(exc, PersistenceError):
        status_code = 503
    else:
        status_code = 500
    content = {"detail": exc.message}
    if isinstance(exc, ConflictError) and exc.conflicts:
        normalizer = get_normalizer()
        content["conflicts"] = [
            {
                "start_time": normalizer.local_datetime(c.start).isoformat(),
                "end_time": normalizer.local_datetime(c.end).isoformat(),
            }
            for c in exc.conflicts
        ]
    return JSONResponse(status_code=status_code, content=content)


@app.on_event("startup")
def startup_db_seed():
    """Create tables, the overlap constraint and the bootstrap admin role."""
    Base.metadata.create_all(bind=engine)
    db_gen = get_db()
    db = next(db_gen)
    try:
        install_constraints(db)
        repository = BookingRepository(db)

        admin_user_id = os.getenv("ADMIN_USER_ID")
        if admin_user_id and repository.get_role(admin_user_id) != ADMIN_ROLE:
            repository.set_role(admin_user_id, ADMIN_ROLE)
            logger.info("User '%s' granted the admin role.", admin_user_id)

        if _str_to_bool(os.getenv("SEED_DEMO_ROOMS")) and not repository.list_rooms():
            repository.create_room("Yellow Room", "#FFD700", "Internet connection available")
            repository.create_room("Purple Room", "#800080", "Quiet space for meetings")
    finally:
        db_gen.close()
    logger.info("Timezone %s, series threshold %d", get_normalizer().tz_name, get_series_threshold())


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Public routes
# ---------------------------------------------------------------------------

@app.get("/api/rooms", response_model=List[schemas.Room])
def get_rooms(repository: BookingRepository = Depends(get_repository)):
    return repository.list_rooms()


@app.get("/api/rooms/{room_id}", response_model=schemas.Room)
def get_room(room_id: int, repository: BookingRepository = Depends(get_repository)):
    return repository.get_room(room_id)


@app.get("/api/rooms/{room_id}/status", response_model=schemas.RoomStatus)
def get_room_status(
    room_id: int,
    service: BookingService = Depends(get_service),
    now: datetime = Depends(get_now),
):
    return service.room_status(room_id, now)


@app.get("/api/rooms/{room_id}/bookings", response_model=List[schemas.ScheduleItem])
def get_room_bookings(
    room_id: int,
    service: BookingService = Depends(get_service),
    now: datetime = Depends(get_now),
):
    return service.room_schedule(room_id, now)


@app.get("/api/rooms/{room_id}/calendar", response_model=schemas.WeekCalendar)
def get_room_calendar(
    room_id: int,
    week_of: Optional[date] = None,
    service: BookingService = Depends(get_service),
    now: datetime = Depends(get_now),
):
    if week_of is None:
        week_of = service.normalizer.local_date(now)
    return service.week_calendar(room_id, week_of)


@app.get("/api/bookings", response_model=List[schemas.ScheduleItem])
def get_bookings(
    search: Optional[str] = None,
    service: BookingService = Depends(get_service),
    now: datetime = Depends(get_now),
):
    return service.upcoming(now, search)


@app.get("/api/squads", response_model=List[schemas.Squad])
def get_squads(repository: BookingRepository = Depends(get_repository)):
    return repository.list_squads()


# ---------------------------------------------------------------------------
# Admin routes
# ---------------------------------------------------------------------------

@app.post("/api/rooms", response_model=schemas.Room, status_code=201)
def create_room(
    payload: schemas.RoomCreate,
    repository: BookingRepository = Depends(get_repository),
    current_admin: str = Depends(require_admin),
):
    return repository.create_room(payload.name, payload.color, payload.description)


@app.delete("/api/rooms/{room_id}", status_code=204)
def delete_room(
    room_id: int,
    repository: BookingRepository = Depends(get_repository),
    current_admin: str = Depends(require_admin),
):
    repository.delete_room(room_id)


@app.post("/api/squads", response_model=schemas.Squad, status_code=201)
def create_squad(
    payload: schemas.SquadCreate,
    repository: BookingRepository = Depends(get_repository),
    current_admin: str = Depends(require_admin),
):
    return repository.create_squad(payload.name)


@app.delete("/api/squads/{squad_id}", status_code=204)
def delete_squad(
    squad_id: int,
    repository: BookingRepository = Depends(get_repository),
    current_admin: str = Depends(require_admin),
):
    repository.delete_squad(squad_id)


@app.post("/api/bookings", response_model=schemas.CreatedBookings, status_code=201)
def create_booking(
    payload: schemas.BookingCreate,
    service: BookingService = Depends(get_service),
    current_admin: str = Depends(require_admin),
):
    rows = service.create_booking(
        payload.room_id,
        Requester(payload.booker_name, payload.squad_id),
        payload.start_time,
        payload.end_time,
    )
    return {"message": "Booking created successfully", "booking_ids": [b.id for b in rows]}


@app.post("/api/bookings/recurring", response_model=schemas.CreatedBookings, status_code=201)
def create_recurring_booking(
    payload: schemas.RecurringBookingCreate,
    service: BookingService = Depends(get_service),
    current_admin: str = Depends(require_admin),
):
    spec = RecurrenceSpec(
        weekdays=frozenset(payload.weekdays),
        start_time=payload.start_time,
        end_time=payload.end_time,
        first_date=payload.first_date,
        last_date=payload.last_date,
    )
    rows = service.create_recurring(payload.room_id, Requester(payload.booker_name, payload.squad_id), spec)
    return {
        "message": "Recurring bookings created successfully",
        "series_id": rows[0].series_id,
        "booking_ids": [b.id for b in rows],
    }


@app.post("/api/bookings/delete", response_model=schemas.DeletedBookings)
def delete_bookings(
    payload: schemas.BookingIds,
    service: BookingService = Depends(get_service),
    current_admin: str = Depends(require_admin),
):
    deleted = service.delete_bookings(payload.ids)
    return {"message": "Booking(s) deleted successfully", "deleted": deleted}


@app.delete("/api/bookings/{booking_id}", response_model=schemas.DeletedBookings)
def delete_booking(
    booking_id: int,
    service: BookingService = Depends(get_service),
    current_admin: str = Depends(require_admin),
):
    deleted = service.delete_bookings([booking_id])
    if not deleted:
        raise NotFoundError(f"Booking {booking_id} does not exist")
    return {"message": "Booking deleted successfully", "deleted": deleted}


@app.delete("/api/series/{series_id}", response_model=schemas.DeletedBookings)
def delete_series(
    series_id: int,
    service: BookingService = Depends(get_service),
    current_admin: str = Depends(require_admin),
):
    deleted = service.delete_series(series_id)
    return {"message": "Weekly series deleted successfully", "deleted": deleted}
