"""Parsing and formatting of recency values.

Dates are stored as ``YYYY-MM-DD`` and timestamps as fixed-width UTC ISO-8601
strings with microseconds and a ``Z`` suffix, so stored values sort in time
order and read back unchanged.
"""

from datetime import date, datetime, timezone
from typing import Optional

DEFAULT_TZ = timezone.utc

Instant = date | datetime


def parse_instant(value: object, recency_type: str = "date") -> Instant:
    """Parse ``value`` into a ``date`` or a UTC ``datetime``."""

    if recency_type == "date":
        return _parse_date(value)
    return _parse_ts(value)


def format_instant(value: Optional[Instant]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        iso = ensure_utc(value).isoformat(timespec="microseconds")
        return iso.replace("+00:00", "Z")
    return value.isoformat()


def as_date(value: Instant) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def as_utc_datetime(value: Instant) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime(value.year, value.month, value.day, tzinfo=DEFAULT_TZ)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=DEFAULT_TZ)
    return value.astimezone(DEFAULT_TZ)


def _parse_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise TypeError(f"Unsupported date type: {type(value)!r}")

    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        return _parse_ts(text).date()


def _parse_ts(value: object) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return as_utc_datetime(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=DEFAULT_TZ)
    if not isinstance(value, str):
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))
