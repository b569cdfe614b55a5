"""
Timestamp helpers shared by sources, filters and scoring.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime

    Args:
        value: datetime, ISO-8601 string or epoch seconds

    Returns:
        Aware UTC datetime, or None if the value cannot be parsed
    """
    if value is None:
        return None
    try:
        if isinstance(value, datetime):
            return to_utc(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            return to_utc(parser.isoparse(value))
    except (ValueError, OverflowError, OSError) as e:
        logger.debug(f"Could not parse timestamp {value!r}: {e}")
    return None


def age_hours(created_at: datetime, now: datetime) -> float:
    """Age in hours, never negative (future timestamps count as brand new)"""
    age_delta = now - created_at
    return max(0.0, age_delta.total_seconds() / 3600.0)
