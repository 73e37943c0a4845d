"""
Missing/Absent classification from the last-seen date and time.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)

MISSING_THRESHOLD_HOURS = 24


def parse_last_seen(last_seen_date: Optional[Union[date, str]], last_seen_time: Optional[str]) -> Optional[datetime]:
    """Combine date + "HH:MM[:SS]" into an aware UTC datetime, or None if either is missing or malformed."""
    if not last_seen_date or not last_seen_time:
        return None
    try:
        if isinstance(last_seen_date, str):
            last_seen_date = date.fromisoformat(last_seen_date[:10])
        parts = [int(p) for p in last_seen_time.split(":")]
        while len(parts) < 3:
            parts.append(0)
        return datetime.combine(last_seen_date, time(*parts[:3]), tzinfo=timezone.utc)
    except (ValueError, TypeError) as e:
        logger.warning(f"Could not parse last seen {last_seen_date!r} {last_seen_time!r}: {e}")
        return None


def hours_since_last_seen(last_seen: Optional[datetime], now: Optional[datetime] = None) -> float:
    if last_seen is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    return (now - last_seen).total_seconds() / 3600


def classify_missing_or_absent(
    last_seen_date,
    last_seen_time: Optional[str],
    requested_type: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Missing and Absent are decided by elapsed time, not by the reporter.

    24 hours or more since last seen -> "Missing", otherwise "Absent".
    Other report types, and reports without a usable last-seen time, keep
    the requested type.
    """
    if requested_type not in ("Missing", "Absent"):
        return requested_type
    last_seen = parse_last_seen(last_seen_date, last_seen_time)
    if last_seen is None:
        return requested_type
    hours = hours_since_last_seen(last_seen, now)
    return "Missing" if hours >= MISSING_THRESHOLD_HOURS else "Absent"
