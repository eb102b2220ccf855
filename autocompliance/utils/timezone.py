from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autocompliance.core.config import settings


def get_zoneinfo(name: Optional[str] = None) -> Optional[ZoneInfo]:
    tz_name = name or getattr(settings, "DEFAULT_TIMEZONE", None)
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def now_local() -> datetime:
    """Current time in the configured default timezone (UTC when unset)."""
    tz = get_zoneinfo()
    return datetime.now(tz) if tz else datetime.now(dt_timezone.utc)


def utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC).
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)


def to_local(dt: datetime | None, tz_name: Optional[str] = None) -> datetime | None:
    """Convert a datetime (naive values are taken as UTC) to the given or default timezone."""
    if dt is None:
        return None
    tz = get_zoneinfo(tz_name)
    aware = to_utc_aware(dt)
    return aware.astimezone(tz) if tz else aware
