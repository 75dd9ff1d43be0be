from datetime import datetime, timedelta, timezone

import pytest

from roombook import models
from roombook.conflicts import Interval, find_conflicts, has_conflict
from roombook.errors import ValidationError

BASE = datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)


def span(start_min, end_min):
    return Interval(BASE + timedelta(minutes=start_min), BASE + timedelta(minutes=end_min))


PAIRS = [
    (span(0, 60), span(30, 90)),    # partial overlap
    (span(0, 60), span(60, 120)),   # touching
    (span(0, 120), span(30, 60)),   # containment
    (span(0, 60), span(0, 60)),     # identical
    (span(0, 30), span(90, 120)),   # disjoint
]


@pytest.mark.parametrize("a,b", PAIRS)
def test_conflict_is_symmetric(a, b):
    assert has_conflict(a, [b]) == has_conflict(b, [a])


def test_touching_intervals_do_not_conflict():
    assert not has_conflict(span(0, 60), [span(60, 120)])
    assert not has_conflict(span(60, 120), [span(0, 60)])


@pytest.mark.parametrize("a,b", [PAIRS[0], PAIRS[2], PAIRS[3], (span(0, 60), span(59, 61))])
def test_positive_overlap_conflicts(a, b):
    assert has_conflict(a, [b])


def test_no_existing_bookings():
    assert not has_conflict(span(0, 60), [])


def test_find_conflicts_returns_only_overlapping():
    existing = [span(0, 30), span(45, 75), span(120, 150)]
    assert find_conflicts(span(30, 60), existing) == [existing[1]]


@pytest.mark.parametrize("start,end", [(60, 60), (60, 0)])
def test_empty_or_reversed_interval_is_rejected(start, end):
    with pytest.raises(ValidationError):
        span(start, end)


def test_stored_bookings_are_checked_by_their_time_columns(make_booking):
    # naive local 09:00-10:00 and 10:30-11:00 on 2024-01-01
    stored = [
        make_booking(1, datetime(2024, 1, 1, 9, 0), datetime(2024, 1, 1, 10, 0)),
        make_booking(2, datetime(2024, 1, 1, 10, 30), datetime(2024, 1, 1, 11, 0)),
    ]
    # BASE is 09:00 local
    assert find_conflicts(span(30, 60), stored) == [stored[0]]
    assert not has_conflict(span(60, 90), stored)
    assert has_conflict(span(60, 91), stored)


def test_naive_stored_times_are_read_as_utc():
    row = models.Booking(start_time=datetime(2024, 1, 1, 5, 0), end_time=datetime(2024, 1, 1, 6, 0))
    assert has_conflict(span(59, 120), [row])
    assert not has_conflict(span(60, 120), [row])
