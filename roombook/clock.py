"""
Conversion between absolute instants and local wall-clock time.

Storage always holds UTC instants; everything a person sees or types (dates,
times of day, weekdays) is interpreted in the single timezone configured for
the process.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from .config import get_timezone_name


@dataclass(frozen=True)
class LocalWallClock:
    year: int
    month: int
    day: int
    hour: int
    minute: int
    weekday: int  # 0=Sunday .. 6=Saturday
    second: int = 0
    microsecond: int = 0
    # 1 for the second pass through a repeated hour when clocks go back
    fold: int = 0

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def time_of_day(self) -> time:
        return time(self.hour, self.minute, self.second, self.microsecond, fold=self.fold)


def sunday_weekday(d: date) -> int:
    """Weekday number with Sunday as 0, the numbering used across the API."""
    return d.isoweekday() % 7


def as_utc(instant: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they were written as UTC
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class TimeNormalizer:
    def __init__(self, tz_name: str):
        self.tz_name = tz_name
        self.tz = ZoneInfo(tz_name)

    def __repr__(self):
        return f"TimeNormalizer({self.tz_name!r})"

    def local_datetime(self, instant: datetime) -> datetime:
        return as_utc(instant).astimezone(self.tz)

    def to_local(self, instant: datetime) -> LocalWallClock:
        local = self.local_datetime(instant)
        return LocalWallClock(
            year=local.year,
            month=local.month,
            day=local.day,
            hour=local.hour,
            minute=local.minute,
            weekday=sunday_weekday(local.date()),
            second=local.second,
            microsecond=local.microsecond,
            fold=local.fold,
        )

    def to_instant(self, wall_clock: LocalWallClock) -> datetime:
        return self.combine(wall_clock.date, wall_clock.time_of_day)

    def combine(self, day: date, time_of_day: time) -> datetime:
        """UTC instant of ``time_of_day`` on ``day`` in the local timezone.

        ``time_of_day.fold`` picks which occurrence of a repeated local time is meant.
        """
        local = datetime.combine(day, time_of_day.replace(tzinfo=None), tzinfo=self.tz)
        return local.astimezone(timezone.utc)

    def local_date(self, instant: datetime) -> date:
        return self.local_datetime(instant).date()

    def time_of_day(self, instant: datetime) -> time:
        return self.local_datetime(instant).time()

    def weekday(self, instant: datetime) -> int:
        return sunday_weekday(self.local_date(instant))


_normalizer: TimeNormalizer | None = None


def get_normalizer() -> TimeNormalizer:
    """Process-wide normalizer, built once from ``APP_TIMEZONE``."""
    global _normalizer
    if _normalizer is None:
        _normalizer = TimeNormalizer(get_timezone_name())
    return _normalizer
