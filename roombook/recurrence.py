from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import FrozenSet, List

from .clock import TimeNormalizer, sunday_weekday
from .conflicts import Interval
from .errors import ValidationError

WEEKDAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


@dataclass(frozen=True)
class RecurrenceSpec:
    """Weekly recurrence entered by an admin; expanded, never stored as-is."""

    weekdays: FrozenSet[int]  # 0=Sunday .. 6=Saturday
    start_time: time
    end_time: time
    first_date: date
    last_date: date

    def __post_init__(self):
        object.__setattr__(self, "weekdays", frozenset(self.weekdays))

    def validate(self) -> None:
        if not self.weekdays:
            raise ValidationError("Select at least one day of the week")
        bad = sorted(d for d in self.weekdays if not isinstance(d, int) or not 0 <= d <= 6)
        if bad:
            raise ValidationError(f"Invalid weekday number(s): {bad}")
        if self.start_time >= self.end_time:
            raise ValidationError("End time must be after start time on the same day")


def iter_dates(first: date, last: date):
    current = first
    while current <= last:
        yield current
        current += timedelta(days=1)


def materialize(spec: RecurrenceSpec, normalizer: TimeNormalizer) -> List[Interval]:
    """One interval per date in ``[first_date, last_date]`` falling on a selected weekday.

    The whole recurrence is rejected when the daily window is empty or reversed;
    a reversed date range simply produces nothing.
    """
    spec.validate()
    intervals = []
    for day in iter_dates(spec.first_date, spec.last_date):
        if sunday_weekday(day) not in spec.weekdays:
            continue
        intervals.append(
            Interval(
                start=normalizer.combine(day, spec.start_time),
                end=normalizer.combine(day, spec.end_time),
            )
        )
    return intervals
