"""
Day bucketing in a user's IANA timezone.

Every per-day aggregate (completions, progress commits, the notification
window, task instances) is partitioned by the user's LOCAL calendar date as a
"YYYY-MM-DD" string. All conversions go through pytz so DST transitions are
resolved by the tz database rather than by offset arithmetic.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Optional, Union

import pytz

from app.core.config import settings
from app.core.exceptions import StoreError
from app.services.logger import logger


def resolve_tz(tz_name: Optional[str], fallback: Optional[str] = None):
    """
    Return a pytz timezone for tz_name.

    Unknown or empty names fall back to `fallback`, then DEFAULT_TIMEZONE,
    then UTC. Never raises.
    """
    for candidate in (tz_name, fallback, settings.DEFAULT_TIMEZONE):
        if not candidate:
            continue
        try:
            return pytz.timezone(str(candidate))
        except pytz.exceptions.UnknownTimeZoneError:
            logger.warning(f"[DayBucketing] Unknown timezone '{candidate}'")
    return pytz.utc


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse a PostgREST timestamp (ISO 8601, 'Z' or offset) into aware UTC."""
    if isinstance(value, datetime):
        return _as_utc(value)
    return _as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def local_date_key(instant: Union[str, datetime], tz_name: Optional[str]) -> str:
    """Local calendar date of `instant` in tz_name, formatted YYYY-MM-DD."""
    tz = resolve_tz(tz_name)
    return parse_timestamp(instant).astimezone(tz).strftime("%Y-%m-%d")


def today_in_tz(tz_name: Optional[str], now: Optional[datetime] = None) -> str:
    return local_date_key(now or datetime.now(timezone.utc), tz_name)


def local_wall_time_utc(
    day: str, hour: int, minute: int, tz_name: Optional[str]
) -> datetime:
    """
    Absolute UTC instant of the wall-clock time hour:minute on `day` in tz_name.

    Minutes past 59 roll forward (09:00 + 75min -> 10:15), matching how slot
    offsets are added to an anchor time.
    """
    tz = resolve_tz(tz_name)
    base = datetime.combine(datetime.strptime(day, "%Y-%m-%d").date(), time(0, 0))
    wall = base + timedelta(hours=hour, minutes=minute)
    return tz.normalize(tz.localize(wall)).astimezone(timezone.utc)


def local_midnight_utc(day: str, tz_name: Optional[str]) -> datetime:
    """Start of the local day as a UTC instant (the daily notification window)."""
    return local_wall_time_utc(day, 0, 0, tz_name)


def minute_of_day(instant: Union[str, datetime], tz_name: Optional[str]) -> int:
    """Minutes since local midnight for `instant` in tz_name."""
    tz = resolve_tz(tz_name)
    local = parse_timestamp(instant).astimezone(tz)
    return local.hour * 60 + local.minute


def to_iso(instant: datetime) -> str:
    return _as_utc(instant).isoformat()


def resolve_user_timezone(store, user_id: str, fallback: Optional[str] = None) -> str:
    """
    The user's preferred IANA zone name.

    Missing, unreadable or unknown preferences fall back to `fallback`
    (DEFAULT_TIMEZONE when not given). The lookup never fails the run.
    """
    fallback = fallback or settings.DEFAULT_TIMEZONE
    try:
        preferred = store.fetch_timezone(user_id)
    except StoreError as e:
        logger.warning(f"[DayBucketing] Timezone lookup failed for {user_id}: {e}")
        preferred = None
    return resolve_tz(preferred, fallback).zone
