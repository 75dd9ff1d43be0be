import logging
import threading
from datetime import date, datetime, time, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from roombook import models
from roombook.conflicts import Interval
from roombook.database.db import Base, make_engine
from roombook.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from roombook.recurrence import RecurrenceSpec
from roombook.repository import OVERLAP_CONSTRAINT, BookingRepository, install_constraints
from roombook.requester import Requester

T0 = datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)  # 09:00 in Baku


def hours(start, end):
    return Interval(T0 + timedelta(hours=start), T0 + timedelta(hours=end))


def test_insert_and_list_in_start_order(repository, room):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(3, 4), hours(0, 1)])

    rows = repository.list_bookings_for_room(room.id, T0 - timedelta(days=1))

    assert [r.start_time.replace(tzinfo=timezone.utc) for r in rows] == [T0, T0 + timedelta(hours=3)]
    assert all(r.room.name == "Yellow Room" for r in rows)


def test_list_skips_finished_bookings(repository, room):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1), hours(5, 6)])
    rows = repository.list_bookings_for_room(room.id, T0 + timedelta(hours=2))
    assert len(rows) == 1


def test_booking_ending_exactly_now_is_still_listed(repository, room):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1)])
    assert len(repository.list_bookings_for_room(room.id, T0 + timedelta(hours=1))) == 1


def test_write_time_overlap_is_rejected(repository, room):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1)])

    with pytest.raises(ConflictError) as excinfo:
        repository.insert_bookings(room.id, Requester("Team B"), [hours(0.5, 1.5)])

    assert excinfo.value.conflicts == [hours(0.5, 1.5)]
    assert len(repository.list_bookings(T0 - timedelta(days=1))) == 1


def test_batch_is_all_or_nothing(repository, room, db):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(48, 49)])

    with pytest.raises(ConflictError):
        repository.insert_bookings(
            room.id, Requester("Team B"), [hours(0, 1), hours(24, 25), hours(48, 49)]
        )

    assert db.query(models.Booking).count() == 1


def test_batch_members_may_not_overlap_each_other(repository, room, db):
    with pytest.raises(ConflictError):
        repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 2), hours(1, 3)])
    assert db.query(models.Booking).count() == 0


def test_same_time_in_another_room_is_fine(repository, room, other_room):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1)])
    repository.insert_bookings(other_room.id, Requester("Team A"), [hours(0, 1)])
    assert len(repository.list_bookings(T0 - timedelta(days=1))) == 2


def test_recurrence_creates_series_row(repository, room, db):
    spec = RecurrenceSpec({1}, time(9, 0), time(10, 0), date(2024, 1, 1), date(2024, 1, 8))

    rows = repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1), hours(168, 169)], spec)

    series = db.query(models.RecurrenceSeries).one()
    assert series.weekday_list == [1]
    assert {r.series_id for r in rows} == {series.id}
    assert repository.series_booking_ids(series.id) == [r.id for r in rows]


def test_delete_ignores_unknown_ids(repository, room):
    rows = repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1), hours(2, 3)])
    assert repository.delete_bookings([rows[0].id, 9999]) == 1
    assert repository.delete_bookings([]) == 0


def test_deleting_all_members_drops_series(repository, room, db):
    spec = RecurrenceSpec({1}, time(9, 0), time(10, 0), date(2024, 1, 1), date(2024, 1, 8))
    rows = repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1), hours(168, 169)], spec)

    repository.delete_bookings([rows[0].id])
    assert db.query(models.RecurrenceSeries).count() == 1

    repository.delete_bookings([rows[1].id])
    assert db.query(models.RecurrenceSeries).count() == 0


def test_unknown_series(repository):
    with pytest.raises(NotFoundError):
        repository.series_booking_ids(42)


def test_room_with_bookings_cannot_be_deleted(repository, room):
    repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1)])
    with pytest.raises(ValidationError):
        repository.delete_room(room.id)


def test_duplicate_room_name(repository, room):
    with pytest.raises(ValidationError):
        repository.create_room("Yellow Room", "#000000")


def test_squads_and_roles(repository):
    squad = repository.create_squad("Platform")
    assert [s.name for s in repository.list_squads()] == ["Platform"]
    repository.delete_squad(squad.id)
    assert repository.list_squads() == []

    assert repository.get_role("u1") is None
    repository.set_role("u1", "admin")
    assert repository.get_role("u1") == "admin"


def failing_commit(error):
    def commit():
        raise error

    return commit


def test_overlap_constraint_violation_becomes_conflict(repository, room, db, monkeypatch):
    orig = Exception(f'conflicting key value violates exclusion constraint "{OVERLAP_CONSTRAINT}"')
    monkeypatch.setattr(db, "commit", failing_commit(IntegrityError("INSERT INTO bookings", {}, orig)))

    with pytest.raises(ConflictError):
        repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1)])

    monkeypatch.undo()
    assert db.query(models.Booking).count() == 0


def test_other_integrity_error_becomes_persistence_error(repository, room, db, monkeypatch):
    orig = Exception("NOT NULL constraint failed: bookings.room_id")
    monkeypatch.setattr(db, "commit", failing_commit(IntegrityError("INSERT INTO bookings", {}, orig)))

    with pytest.raises(PersistenceError) as info:
        repository.insert_bookings(room.id, Requester("Team A"), [hours(0, 1)])

    assert not isinstance(info.value, ConflictError)
    assert "NOT NULL" in info.value.message


def test_squad_storage_failure_is_persistence_error(repository, db, monkeypatch):
    error = OperationalError("INSERT INTO squads", {}, Exception("disk I/O error"))
    monkeypatch.setattr(db, "commit", failing_commit(error))

    with pytest.raises(PersistenceError):
        repository.create_squad("Platform")


class FakePostgresSession:
    """Just enough of a Session for install_constraints."""

    def __init__(self, installed=False, fail_on=None):
        self.installed = installed
        self.fail_on = fail_on
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))

    def execute(self, statement, params=None):
        sql = str(statement)
        self.executed.append(sql)
        if self.fail_on and sql.startswith(self.fail_on):
            raise OperationalError(sql, params, Exception("permission denied to create extension"))
        return SimpleNamespace(first=lambda: (1,) if self.installed else None)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def test_existing_overlap_constraint_is_left_alone():
    session = FakePostgresSession(installed=True)
    install_constraints(session)
    assert len(session.executed) == 1
    assert "pg_constraint" in session.executed[0]


def test_missing_overlap_constraint_is_installed():
    session = FakePostgresSession()
    install_constraints(session)
    assert any(sql.startswith("ALTER TABLE bookings") for sql in session.executed)
    assert session.commits == 2


def test_failed_constraint_install_is_logged(caplog):
    session = FakePostgresSession(fail_on="CREATE EXTENSION")
    with caplog.at_level(logging.WARNING, logger="roombook.repository"):
        install_constraints(session)

    assert session.rollbacks == 1
    assert not any(sql.startswith("ALTER TABLE") for sql in session.executed)
    assert OVERLAP_CONSTRAINT in caplog.text
    assert "permission denied" in caplog.text


def test_concurrent_writers_on_sqlite_file_cannot_double_book(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'rooms.db'}")
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    setup = Session()
    room_id = BookingRepository(setup).create_room("Yellow Room", "#FFD700").id
    setup.close()

    first_checked = threading.Event()
    second_checked = threading.Event()
    outcomes = []

    def writer(name, after_check, wait_before=None):
        if wait_before is not None:
            wait_before.wait(timeout=5)
        session = Session()
        repo = BookingRepository(session)
        check = repo._overlapping

        def overlapping(room, interval):
            found = check(room, interval)
            after_check()
            return found

        repo._overlapping = overlapping
        try:
            repo.insert_bookings(room_id, Requester(name), [hours(0, 1)])
            outcomes.append("created")
        except ConflictError:
            outcomes.append("conflict")
        except Exception as exc:
            outcomes.append(repr(exc))
        finally:
            session.close()

    def first_after_check():
        first_checked.set()
        # gives the second writer the chance to check before this one commits
        second_checked.wait(timeout=1)

    threads = [
        threading.Thread(target=writer, args=("Team A", first_after_check)),
        threading.Thread(target=writer, args=("Team B", second_checked.set, first_checked)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    check_session = Session()
    stored = check_session.query(models.Booking).count()
    check_session.close()
    engine.dispose()

    assert sorted(outcomes) == ["conflict", "created"]
    assert stored == 1
