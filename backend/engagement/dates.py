"""Date ranges and window boundaries. All windows are measured in UTC day buckets."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Union

DAU_DAYS = 1
WAU_DAYS = 7
MAU_DAYS = 30

DateLike = Union[date, datetime, str]


class InvalidDateRange(ValueError):
    """Raised when a range ends before it starts."""


def to_day(value: DateLike) -> date:
    if isinstance(value, str):
        value = datetime.fromisoformat(value) if "T" in value or " " in value else date.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def day_start(day: date) -> datetime:
    """Naive UTC midnight at the start of ``day``."""
    return datetime.combine(day, time.min)


def window_start(anchor: date, length_days: int) -> date:
    """First day of the inclusive window of ``length_days`` ending on ``anchor``."""
    return anchor - timedelta(days=length_days - 1)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidDateRange(f"Range start {self.start} is after end {self.end}")

    @classmethod
    def of(cls, start: DateLike, end: DateLike) -> "DateRange":
        return cls(to_day(start), to_day(end))

    @classmethod
    def trailing(cls, days: int = MAU_DAYS, end: Optional[DateLike] = None) -> "DateRange":
        end_day = to_day(end) if end is not None else utc_today()
        return cls(window_start(end_day, days), end_day)

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        return (self.end - self.start).days + 1
