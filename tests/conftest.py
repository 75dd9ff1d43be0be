import os

# must be set before roombook.database.db builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_TIMEZONE"] = "Asia/Baku"
os.environ.pop("SERIES_THRESHOLD", None)
os.environ.pop("ADMIN_USER_ID", None)
os.environ.pop("SEED_DEMO_ROOMS", None)

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from roombook import models
from roombook.auth import ADMIN_ROLE, create_session_token
from roombook.clock import TimeNormalizer
from roombook.database.db import Base, SessionLocal, engine
from roombook.main import app, get_now
from roombook.repository import BookingRepository
from roombook.services import BookingService

FIXED_NOW = datetime(2023, 12, 31, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def normalizer():
    return TimeNormalizer("Asia/Baku")


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repository(db):
    return BookingRepository(db)


@pytest.fixture
def service(repository, normalizer):
    return BookingService(repository, normalizer)


@pytest.fixture
def room(repository):
    return repository.create_room("Yellow Room", "#FFD700", "Internet connection available")


@pytest.fixture
def other_room(repository):
    return repository.create_room("Purple Room", "#800080")


@pytest.fixture
def client(db):
    app.dependency_overrides[get_now] = lambda: FIXED_NOW
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(repository):
    repository.set_role("admin-1", ADMIN_ROLE)
    return {"Authorization": f"Bearer {create_session_token('admin-1')}"}


@pytest.fixture
def make_booking(normalizer):
    """Build unsaved bookings from naive local datetimes."""

    def factory(id, start, end, room_id=1, booker_name="Team A", series_id=None, squad_id=None):
        return models.Booking(
            id=id,
            room_id=room_id,
            booker_name=booker_name,
            squad_id=squad_id,
            series_id=series_id,
            start_time=normalizer.combine(start.date(), start.time()),
            end_time=normalizer.combine(end.date(), end.time()),
        )

    return factory
