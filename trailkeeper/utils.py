import math
from datetime import datetime
from typing import Optional

import pytz

EARTH_RADIUS_M = 6371008.8
METERS_PER_DEGREE_LAT = 111320.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two WGS-84 coordinates."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def now_utc() -> datetime:
    """Get current time as a UTC-aware datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime, convert an aware one to UTC.
    Naive values come back from SQLite, which stores them as UTC.
    """
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def to_local(dt: Optional[datetime], zone: str = "UTC") -> Optional[datetime]:
    """Convert a datetime to the display time zone."""
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(pytz.timezone(zone))


def seconds_between(earlier, later) -> float:
    """Elapsed seconds between two fixes.
    Uses the monotonic clock when both fixes carry it.
    """
    if earlier.monotonic is not None and later.monotonic is not None:
        return later.monotonic - earlier.monotonic
    return (ensure_utc(later.timestamp) - ensure_utc(earlier.timestamp)).total_seconds()
