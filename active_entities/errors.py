"""Exception types raised by the active entities engine."""

from typing import Optional


class ActiveEntitiesError(Exception):
    """Base class for engine errors."""


class ConfigError(ActiveEntitiesError, ValueError):
    """Invalid or incomplete engine configuration."""


class SourceReadError(ActiveEntitiesError):
    """Reading candidate rows from the row source failed."""


class InvalidRowError(SourceReadError):
    """A source row is missing its key or recency value."""


class MergeWriteError(ActiveEntitiesError):
    """Upserting one or more rows into the target table failed.

    ``key`` is set when the error concerns a single row. ``report`` is set when
    the orchestrator raises the error at the end of a partially applied batch.
    """

    def __init__(
        self,
        message: str,
        *,
        key: object = None,
        report: Optional[object] = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.report = report
