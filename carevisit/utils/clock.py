"""Wall-clock source, injectable for tests."""

from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by the host's UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_day_bounds(now: datetime, tz: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    """
    Midnight-to-midnight bounds of the calendar day containing ``now``.
    
    With no ``tz`` the host zone is consulted on every call, so the offsets
    follow daylight-saving changes while the client keeps running. Both ends
    sit on local midnight, which makes DST days 23 or 25 hours long.
    """
    now = ensure_aware(now)
    if tz is None:
        day = now.astimezone().date()
        start = datetime.combine(day, time.min).astimezone()
        end = datetime.combine(day + timedelta(days=1), time.min).astimezone()
    else:
        day = now.astimezone(tz).date()
        start = datetime.combine(day, time.min, tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end
