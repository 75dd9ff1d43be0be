from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Tuple

from .clock import as_utc
from .errors import ValidationError


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` span of UTC instants for one room."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start is None or self.end is None:
            raise ValidationError("Start and end time are required")
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.end <= self.start:
            raise ValidationError("End time must be after start time")

    def overlaps(self, other) -> bool:
        start, end = bounds(other)
        return start < self.end and end > self.start


def bounds(item) -> Tuple[datetime, datetime]:
    """UTC ``(start, end)`` of an ``Interval`` or a stored booking row."""
    if isinstance(item, Interval):
        return item.start, item.end
    return as_utc(item.start_time), as_utc(item.end_time)


def find_conflicts(candidate: Interval, existing: Iterable) -> List:
    """Every item of ``existing`` (intervals or bookings) overlapping ``candidate``."""
    return [item for item in existing if candidate.overlaps(item)]


def has_conflict(candidate: Interval, existing: Iterable) -> bool:
    return any(candidate.overlaps(item) for item in existing)
