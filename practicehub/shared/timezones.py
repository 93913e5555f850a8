"""Timezone helpers - location wall clock <-> UTC instants"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional

import pytz

from ..config import DEFAULT_LOCATION_TIMEZONE

logger = logging.getLogger(__name__)


def get_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
    """Get timezone object, falling back to the default location zone"""
    try:
        return pytz.timezone(tz_name or DEFAULT_LOCATION_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"⚠️ Unknown timezone '{tz_name}', using {DEFAULT_LOCATION_TIMEZONE}")
        return pytz.timezone(DEFAULT_LOCATION_TIMEZONE)


def localize(tz: pytz.BaseTzInfo, naive_dt: datetime) -> datetime:
    """
    Attach a zone to a local wall-clock datetime using the offset valid on that date.

    Ambiguous times (fall back) resolve to the first occurrence. Times inside a
    spring-forward gap are shifted forward by the size of the gap.
    """
    try:
        return tz.localize(naive_dt, is_dst=None)
    except pytz.exceptions.AmbiguousTimeError:
        return tz.localize(naive_dt, is_dst=True)
    except pytz.exceptions.NonExistentTimeError:
        # Pre-transition offset, normalized onto the post-transition wall clock
        return tz.normalize(tz.localize(naive_dt, is_dst=False))


def local_to_utc(local_date: date, local_time: time, tz_name: str) -> datetime:
    """Convert a local date + wall-clock time to an aware UTC datetime"""
    tz = get_timezone(tz_name)
    naive_dt = datetime.combine(local_date, local_time)
    return localize(tz, naive_dt).astimezone(timezone.utc)


def utc_to_local(utc_dt: datetime, tz_name: str) -> datetime:
    """Convert a UTC datetime to the location's zone"""
    return ensure_utc(utc_dt).astimezone(get_timezone(tz_name))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. Naive values (e.g. read back from SQLite) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
