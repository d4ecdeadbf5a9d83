"""Time utilities: injectable clocks and restaurant-local timezone handling."""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC = timezone.utc

# Dominican Republic observes AST (UTC-4) all year, no DST.
SANTO_DOMINGO_FALLBACK = timezone(timedelta(hours=-4), "AST")


def load_timezone(name: str) -> tzinfo:
    """Return a tzinfo for name, falling back to fixed AST when tzdata is unavailable."""
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return SANTO_DOMINGO_FALLBACK


class Clock(ABC):
    """Source of the current time; always returns aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """Manually driven clock for tests and replays."""

    def __init__(self, current: datetime):
        self._current = ensure_utc(current)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = ensure_utc(current)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta built from kwargs (minutes=..., hours=...)."""
        self._current = self._current + timedelta(**kwargs)
        return self._current


def ensure_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to UTC; naive values are assumed to already be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_utc(dt: Optional[datetime], local_tz: tzinfo) -> Optional[datetime]:
    """Normalize user input to UTC (naive values are read as restaurant-local time)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=local_tz)
    return dt.astimezone(UTC)


def to_local(dt: Optional[datetime], local_tz: tzinfo) -> Optional[datetime]:
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(local_tz)


def local_day(dt: datetime, local_tz: tzinfo) -> date:
    """Calendar day of dt as seen on the restaurant floor."""
    return ensure_utc(dt).astimezone(local_tz).date()


def local_day_bounds(day: date, local_tz: tzinfo) -> tuple:
    """Return the [start, end) UTC range that covers a local calendar day."""
    start_local = datetime(day.year, day.month, day.day, tzinfo=local_tz)
    end_local = start_local + timedelta(days=1)
    return start_local.astimezone(UTC), end_local.astimezone(UTC)
