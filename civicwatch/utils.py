"""Shared utility functions."""
import re
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as dateparser


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an API timestamp into an aware UTC-normalised datetime.

    Accepts datetimes, ISO-8601 strings and epoch seconds/milliseconds.
    Naive values are treated as UTC. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        # Millisecond epochs come from JS clients
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        try:
            dt = dateparser.parse(str(value))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def hours_since(dt: datetime, now: Optional[datetime] = None) -> float:
    """Return the age of ``dt`` in hours relative to ``now`` (default: current UTC time)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - dt).total_seconds() / 3600.0


def parse_since_seconds(value: str) -> int:
    """Parse a relative time string like '12h', '2d' into total seconds.

    Raises ValueError on invalid input.
    """
    match = re.match(r"^(\d+)\s*([smhdwMy])$", value.strip())
    if not match:
        raise ValueError(f"Invalid time value '{value}'. Use e.g. 30s, 30m, 2h, 1d, 1w, 3M, 1y")
    amount, unit = int(match.group(1)), match.group(2)
    multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800, "M": 2592000, "y": 31536000}
    return amount * multipliers[unit]


def relative_time(dt: datetime) -> str:
    """Return a human-friendly relative time string like '2h ago'."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    diff = datetime.now(timezone.utc) - dt
    seconds = int(diff.total_seconds())
    if seconds < 0:
        return "just now"
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    weeks = days // 7
    return f"{weeks}w ago"
