"""
Meditation Streak Engine - Clock & Day Boundaries
All day arithmetic happens in one reference timezone.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Protocol

import pytz


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DayWindow:
    yesterday: datetime
    today: datetime
    tomorrow: datetime


def get_timezone(name: str):
    """Resolve a timezone name, raising ValueError on unknown names."""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown timezone: {name}")


def ensure_aware(instant: datetime) -> datetime:
    # Naive timestamps are treated as UTC
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def local_day(instant: datetime, tz) -> date:
    """Calendar date of `instant` in `tz`."""
    return ensure_aware(instant).astimezone(tz).date()


def midnight(day: date, tz) -> datetime:
    return tz.localize(datetime.combine(day, time.min))


def start_of_day(instant: datetime, tz) -> datetime:
    return midnight(local_day(instant, tz), tz)


def day_window(instant: datetime, tz) -> DayWindow:
    """
    Yesterday/today/tomorrow boundaries around `instant`.

    Each boundary is a local midnight, so DST days are 23 or 25 hours long.
    """
    today = local_day(instant, tz)
    return DayWindow(
        yesterday=midnight(today - timedelta(days=1), tz),
        today=midnight(today, tz),
        tomorrow=midnight(today + timedelta(days=1), tz),
    )


def days_between(earlier: datetime, later: datetime, tz) -> int:
    """Number of calendar days from `earlier` to `later` in `tz`."""
    return (local_day(later, tz) - local_day(earlier, tz)).days


def shift_months(instant: datetime, months: int) -> datetime:
    """Move by whole calendar months, clamping the day to the target month."""
    index = instant.year * 12 + (instant.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(instant.day, calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)


def window_start(timeframe: str, now: datetime) -> Optional[datetime]:
    """
    Start of a leaderboard window ending at `now`.

    Returns None for "all" (unbounded).
    """
    if timeframe == "all":
        return None
    if timeframe == "week":
        return now - timedelta(days=7)
    if timeframe == "month":
        return shift_months(now, -1)
    if timeframe == "year":
        return shift_months(now, -12)
    raise ValueError(f"Unknown timeframe: {timeframe}")
