"""Time zone helpers shared by the scheduler, aggregator and renderer.

The database stores naive UTC datetimes; everything above the repository
layer works with aware datetimes.
"""

from datetime import datetime, time as dt_time, timedelta, date
from typing import Optional, Tuple

import pytz


def resolve_timezone(name: Optional[str], default: str) -> Tuple[pytz.BaseTzInfo, bool]:
    """
    Resolve an IANA zone name, falling back to ``default``.

    Returns:
        (tzinfo, is_valid) where is_valid is False when ``name`` was set but
        unknown. A missing name is not considered invalid.
    """
    if not name:
        return pytz.timezone(default), True
    try:
        return pytz.timezone(name), True
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(default), False


def ensure_aware_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Convert to the naive UTC form stored in the database."""
    return ensure_aware_utc(value).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(pytz.utc)


def day_bounds(day: date, tz: pytz.BaseTzInfo) -> Tuple[datetime, datetime]:
    """
    Return (start, end) of a local calendar day, both aware and inclusive.

    localize() picks the correct offset on DST transition days.
    """
    start = tz.localize(datetime.combine(day, dt_time(0, 0)))
    end = tz.localize(datetime.combine(day, dt_time(23, 59, 59, 999999)))
    return start, end


def local_day_bounds(now: datetime, tz: pytz.BaseTzInfo, offset_days: int = 0) -> Tuple[datetime, datetime]:
    """Bounds of the local day ``offset_days`` after the one containing ``now``."""
    local_today = ensure_aware_utc(now).astimezone(tz).date()
    return day_bounds(local_today + timedelta(days=offset_days), tz)
