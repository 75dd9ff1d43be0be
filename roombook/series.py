"""
Grouping of stored bookings into weekly series for display and bulk delete.

Bookings created through a recurrence carry ``series_id`` and are grouped by
it. Older rows without one are matched by content: same room, same requester
and the same local start/end clock time. Such a group is only reported as a
series once it reaches the threshold, so a couple of coincidental bookings at
the same hour stay individual.
"""
from typing import Iterable, List

from .clock import TimeNormalizer
from .config import DEFAULT_SERIES_THRESHOLD
from .requester import Requester
from .schemas import BookingView, ScheduleItem, SeriesView


def _related_attr(booking, relation: str, attr: str):
    related = getattr(booking, relation, None)
    return getattr(related, attr, None) if related is not None else None


def booking_view(booking, normalizer: TimeNormalizer) -> BookingView:
    return BookingView(
        id=booking.id,
        room_id=booking.room_id,
        room_name=_related_attr(booking, "room", "name"),
        room_color=_related_attr(booking, "room", "color"),
        booker_name=booking.booker_name,
        squad_id=getattr(booking, "squad_id", None),
        squad_name=_related_attr(booking, "squad", "name"),
        series_id=getattr(booking, "series_id", None),
        start_time=normalizer.local_datetime(booking.start_time),
        end_time=normalizer.local_datetime(booking.end_time),
        weekday=normalizer.weekday(booking.start_time),
    )


def series_view(members: list, normalizer: TimeNormalizer, series_id=None) -> SeriesView:
    first = min(members, key=lambda b: normalizer.local_datetime(b.start_time))
    range_start = min(normalizer.local_datetime(b.start_time) for b in members)
    range_end = max(normalizer.local_datetime(b.end_time) for b in members)
    weekdays = sorted({normalizer.weekday(b.start_time) for b in members})
    return SeriesView(
        series_id=series_id,
        room_id=first.room_id,
        room_name=_related_attr(first, "room", "name"),
        room_color=_related_attr(first, "room", "color"),
        booker_name=first.booker_name,
        squad_id=getattr(first, "squad_id", None),
        squad_name=_related_attr(first, "squad", "name"),
        count=len(members),
        weekdays=weekdays,
        local_start=normalizer.time_of_day(first.start_time),
        local_end=normalizer.time_of_day(first.end_time),
        start_time=range_start,
        end_time=range_end,
        booking_ids=[b.id for b in members],
    )


def content_key(booking, normalizer: TimeNormalizer):
    start = normalizer.to_local(booking.start_time)
    end = normalizer.to_local(booking.end_time)
    return (
        booking.room_id,
        Requester.of(booking),
        (start.hour, start.minute),
        (end.hour, end.minute),
    )


def detect_series(
    bookings: Iterable,
    normalizer: TimeNormalizer,
    threshold: int = DEFAULT_SERIES_THRESHOLD,
) -> List[ScheduleItem]:
    """Collapse ``bookings`` into individual views and series views.

    Each output item sits at the input position of its first member, so a
    start-ordered input gives a start-ordered output.
    """
    tracked = {}
    untracked = {}
    for position, booking in enumerate(bookings):
        series_id = getattr(booking, "series_id", None)
        if series_id is not None:
            tracked.setdefault(series_id, []).append((position, booking))
        else:
            key = content_key(booking, normalizer)
            untracked.setdefault(key, []).append((position, booking))

    placed = []
    for series_id, members in tracked.items():
        placed.append((members[0][0], series_view([b for _, b in members], normalizer, series_id)))

    for members in untracked.values():
        if len(members) >= threshold:
            placed.append((members[0][0], series_view([b for _, b in members], normalizer)))
        else:
            placed.extend((position, booking_view(b, normalizer)) for position, b in members)

    placed.sort(key=lambda item: item[0])
    return [item for _, item in placed]


def matches_search(item: ScheduleItem, query: str | None) -> bool:
    """Case-insensitive match on room name or requester, as the booking tables filter."""
    if not query:
        return True
    needle = query.strip().lower()
    haystack = [item.room_name, item.booker_name, item.squad_name]
    return any(needle in value.lower() for value in haystack if value)
