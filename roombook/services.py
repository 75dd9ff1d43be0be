"""
Booking workflows on top of the repository.

Recurring bookings follow an all-or-nothing policy: every date of the
recurrence is checked first, and if any of them clashes with an existing
booking nothing is written and the error lists each clashing interval. The
repository then writes the whole batch in one transaction, so a clash that
appears between the check and the write also leaves nothing behind.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from .clock import TimeNormalizer, as_utc, sunday_weekday
from .config import DEFAULT_SERIES_THRESHOLD
from .conflicts import Interval, find_conflicts
from .errors import ConflictError, ValidationError
from .recurrence import RecurrenceSpec, materialize
from .repository import BookingRepository
from .requester import Requester
from .schemas import CalendarDay, RoomStatus, ScheduleItem, WeekCalendar
from .series import booking_view, detect_series, matches_search

logger = logging.getLogger("roombook.services")


class BookingService:
    def __init__(self, repository: BookingRepository, normalizer: TimeNormalizer, series_threshold: int = DEFAULT_SERIES_THRESHOLD):
        self.repository = repository
        self.normalizer = normalizer
        self.series_threshold = series_threshold

    def _resolve_requester(self, requester: Requester) -> Requester:
        requester = requester.validate()
        if requester.squad_id is not None:
            self.repository.get_squad(requester.squad_id)
        return requester

    def to_instant(self, value: datetime) -> datetime:
        """Naive datetimes are local wall-clock time; aware ones are taken as is."""
        if value.tzinfo is None:
            return self.normalizer.combine(value.date(), value.time())
        return as_utc(value)

    def _precheck(self, room_id: int, candidates: List[Interval]) -> None:
        existing = self.repository.list_bookings_for_room(room_id, min(c.start for c in candidates))
        clashes = [c for c in candidates if find_conflicts(c, existing)]
        if clashes:
            logger.info("Pre-check rejected %d of %d interval(s) for room %s", len(clashes), len(candidates), room_id)
            if len(candidates) == 1:
                raise ConflictError(conflicts=clashes)
            days = ", ".join(self.normalizer.local_date(c.start).isoformat() for c in clashes)
            raise ConflictError(
                f"{len(clashes)} of {len(candidates)} dates are already booked ({days}). "
                "No bookings were created.",
                conflicts=clashes,
            )

    def create_booking(self, room_id: int, requester: Requester, start: datetime, end: datetime):
        self.repository.get_room(room_id)
        requester = self._resolve_requester(requester)
        candidate = Interval(self.to_instant(start), self.to_instant(end))
        self._precheck(room_id, [candidate])
        return self.repository.insert_bookings(room_id, requester, [candidate])

    def create_recurring(self, room_id: int, requester: Requester, spec: RecurrenceSpec):
        self.repository.get_room(room_id)
        requester = self._resolve_requester(requester)
        candidates = materialize(spec, self.normalizer)
        if not candidates:
            raise ValidationError("The selected days do not occur in the chosen date range")
        self._precheck(room_id, candidates)
        return self.repository.insert_bookings(room_id, requester, candidates, recurrence=spec)

    def room_schedule(self, room_id: int, now: datetime) -> List[ScheduleItem]:
        self.repository.get_room(room_id)
        bookings = self.repository.list_bookings_for_room(room_id, now)
        return detect_series(bookings, self.normalizer, self.series_threshold)

    def upcoming(self, now: datetime, search: Optional[str] = None) -> List[ScheduleItem]:
        items = detect_series(self.repository.list_bookings(now), self.normalizer, self.series_threshold)
        return [item for item in items if matches_search(item, search)]

    def delete_bookings(self, ids: List[int]) -> int:
        return self.repository.delete_bookings(ids)

    def delete_series(self, series_id: int) -> int:
        ids = self.repository.series_booking_ids(series_id)
        return self.repository.delete_bookings(ids)

    def room_status(self, room_id: int, now: datetime) -> RoomStatus:
        self.repository.get_room(room_id)
        now = as_utc(now)
        bookings = self.repository.list_bookings_for_room(room_id, now)
        current = next(
            (b for b in bookings if as_utc(b.start_time) <= now < as_utc(b.end_time)), None
        )
        upcoming = next((b for b in bookings if as_utc(b.start_time) > now), None)
        current_view = booking_view(current, self.normalizer) if current else None
        next_view = booking_view(upcoming, self.normalizer) if upcoming else None
        return RoomStatus(
            room_id=room_id,
            is_available=current is None,
            current_booking=current_view,
            busy_until=current_view.end_time if current_view else None,
            next_booking=next_view,
            next_start=next_view.start_time if next_view else None,
        )

    def week_calendar(self, room_id: int, week_of: date) -> WeekCalendar:
        """Monday-to-Sunday grid of a room's bookings around ``week_of``."""
        self.repository.get_room(room_id)
        week_start = week_of - timedelta(days=week_of.weekday())
        week_end = week_start + timedelta(days=6)
        bookings = self.repository.list_bookings_between(
            room_id,
            self.normalizer.combine(week_start, time.min),
            self.normalizer.combine(week_end + timedelta(days=1), time.min),
        )
        days = []
        for offset in range(7):
            day = week_start + timedelta(days=offset)
            days.append(
                CalendarDay(
                    day=day,
                    weekday=sunday_weekday(day),
                    bookings=[
                        booking_view(b, self.normalizer)
                        for b in bookings
                        if self.normalizer.local_date(b.start_time) == day
                    ],
                )
            )
        return WeekCalendar(room_id=room_id, week_start=week_start, week_end=week_end, days=days)
