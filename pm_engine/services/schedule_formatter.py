"""
Schedule Formatter
Normalizes the timestamps that flow between the store and the scheduler.

Everything inside the engine is a timezone-aware UTC datetime. Stored values
may arrive as ISO strings, naive datetimes or Firestore timestamps.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Any) -> Optional[datetime]:
    """
    Coerce a stored date value into an aware UTC datetime.

    Args:
        value: datetime, date, ISO-8601 string or None

    Returns:
        Aware UTC datetime, or None when value is empty

    Raises:
        ValueError: when a string cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, str):
        value = date_parser.isoparse(value)
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, time.min)

    if not isinstance(value, datetime):
        raise ValueError(f"Unsupported date value: {value!r}")

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


def format_date(value: Optional[datetime]) -> str:
    if not value:
        return "never"
    return value.strftime("%Y-%m-%d")
