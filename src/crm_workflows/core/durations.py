"""Relative durations such as ``"3 days"`` used for due dates and wait delays."""
import re
from datetime import datetime, timedelta
from typing import Optional

DURATION_PATTERN = re.compile(r"(\d+)\s*(hours?|days?|weeks?)", re.IGNORECASE)

_UNITS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}


def parse_duration(value: Optional[str]) -> Optional[timedelta]:
    """``"N hours|days|weeks"`` to a timedelta, None when the text does not match."""
    if not value:
        return None
    match = DURATION_PATTERN.search(str(value))
    if not match:
        return None
    amount, unit = match.groups()
    return int(amount) * _UNITS[unit.lower().rstrip("s")]


def due_from_now(value: Optional[str], now: datetime) -> datetime:
    """Absolute time for a relative duration; unmatched input falls back to now."""
    delta = parse_duration(value)
    if delta is None:
        return now
    return now + delta
