"""Recency cutoff computation."""

from datetime import timedelta

from .errors import ConfigError
from .timestamps import Instant, as_date, as_utc_datetime

RECENCY_TYPES = ("date", "timestamp")


def threshold(
    now: Instant, days_threshold: int, recency_type: str = "date"
) -> Instant:
    """Return ``now`` minus ``days_threshold`` whole days.

    With ``recency_type="date"`` the cutoff is a :class:`~datetime.date` and a
    ``datetime`` ``now`` is truncated to its day first. With ``"timestamp"``
    the cutoff is a UTC ``datetime``. Zero and negative thresholds are valid;
    a negative value yields a cutoff in the future.
    """

    if isinstance(days_threshold, bool) or not isinstance(days_threshold, int):
        raise ConfigError(
            f"days_threshold must be an integer, got {days_threshold!r}"
        )
    if recency_type not in RECENCY_TYPES:
        raise ConfigError(f"Unknown recency_type: {recency_type!r}")

    delta = timedelta(days=days_threshold)
    if recency_type == "date":
        return as_date(now) - delta
    return as_utc_datetime(now) - delta
