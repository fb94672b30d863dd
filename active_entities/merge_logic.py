"""Core incremental merge logic for the active entities table.

A run selects candidate rows from the source, keeps the active ones,
collapses them to one row per key and upserts the result into the target
table.

Key concepts
------------
* On the first run (empty target) every source row is a candidate. Later runs
  only read rows newer than the target watermark minus a lookback window, so
  late-arriving corrections inside the window are picked up again.
* Deduplication keeps the row with the greatest recency value per key. Ties
  are broken by a configurable secondary field, by ingestion order, or by the
  row's canonical JSON so results never depend on incidental ordering.
* Upserts replace the whole stored row. Re-applying a batch leaves the table
  unchanged, so a failed run can simply be run again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ConfigError, InvalidRowError, MergeWriteError
from .serialization import canonical_json
from .sources import RecencyPredicate, RowSource
from .store import INSERTED, UNCHANGED, UPDATED
from .timestamps import Instant, format_instant

_LOG = logging.getLogger(__name__)

INGESTION_ORDER = "__ingestion_order__"


@dataclass
class RunState:
    """Snapshot of the target taken before any candidate is read."""

    is_first_run: bool
    cutoff_instant: Instant
    watermark: Optional[Instant] = None

    def lookback_bound(self, lookback_days: int) -> Optional[Instant]:
        """Lower (exclusive) recency bound for incremental candidates."""

        if self.is_first_run or self.watermark is None:
            return None
        return self.watermark - timedelta(days=lookback_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_first_run": self.is_first_run,
            "cutoff_instant": format_instant(self.cutoff_instant),
            "watermark": format_instant(self.watermark),
        }


@dataclass
class MergeReport:
    """Outcome of :func:`apply_merge`."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    succeeded_keys: List[Any] = field(default_factory=list)
    failed_keys: Dict[Any, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed_keys

    def to_dict(self) -> Dict[str, Any]:
        """Return a serialisable representation of the report."""

        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "succeeded": len(self.succeeded_keys),
            "failed_keys": {str(key): error for key, error in self.failed_keys.items()},
        }


def select_candidates(
    source: RowSource,
    run_state: RunState,
    lookback_days: int,
    recency_field: str,
) -> List[Dict[str, Any]]:
    """Return the source rows eligible for this run.

    First runs read the whole source. Incremental runs only read rows whose
    recency is strictly greater than ``watermark - lookback_days``; the
    predicate is handed to the source, which pushes it down when it can.
    A large ``lookback_days`` is allowed and degrades towards a full rescan.
    """

    if isinstance(lookback_days, bool) or not isinstance(lookback_days, int):
        raise ConfigError(f"lookback_days must be an integer, got {lookback_days!r}")
    if lookback_days < 0:
        raise ConfigError(f"lookback_days must be >= 0, got {lookback_days}")

    if not run_state.is_first_run and run_state.watermark is None:
        _LOG.warning("Target is not empty but has no watermark; reading full source")

    lower_bound = run_state.lookback_bound(lookback_days)
    predicate = None
    if lower_bound is not None:
        predicate = RecencyPredicate(recency_field, lower_bound)

    candidates = list(source.iter_rows(predicate))
    _LOG.debug(
        "Selected %s candidates (lower bound: %s)",
        len(candidates),
        format_instant(lower_bound),
    )
    return candidates


def filter_active(
    rows: Iterable[Dict[str, Any]], cutoff: Instant, recency_field: str
) -> List[Dict[str, Any]]:
    """Keep rows whose recency is on or after ``cutoff``."""

    return [row for row in rows if row[recency_field] >= cutoff]


def dedupe(
    rows: Iterable[Dict[str, Any]],
    unique_key: str,
    recency_field: str,
    tie_breaker: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Collapse ``rows`` to the most recent row per ``unique_key``.

    When two rows for a key share the same recency value:

    * ``tie_breaker=<field>`` keeps the row with the greater field value
      (numeric text compares as a number; rows missing the field lose),
    * ``tie_breaker=INGESTION_ORDER`` keeps the row read last,
    * no tie breaker keeps the row whose canonical JSON sorts last. This is
      repeatable but arbitrary; supply a tie breaker when ties carry meaning.

    Rows are returned in first-seen key order. Tie breaker values that cannot
    be compared with each other raise :class:`InvalidRowError`.
    """

    best: Dict[Any, Tuple[Tuple[Any, ...], Dict[str, Any]]] = {}
    for position, row in enumerate(rows):
        rank = _rank(row, position, recency_field, tie_breaker)
        key = row[unique_key]
        current = best.get(key)
        try:
            better = current is None or rank > current[0]
        except TypeError as exc:
            raise InvalidRowError(
                f"tie breaker '{tie_breaker}' values for key {key!r} are not comparable"
            ) from exc
        if better:
            best[key] = (rank, row)

    return [row for _, row in best.values()]


def apply_merge(
    store: Any,
    rows: Iterable[Dict[str, Any]],
    unique_key: str,
    *,
    merged_at: Optional[datetime] = None,
) -> MergeReport:
    """Upsert deduplicated ``rows`` into ``store``.

    Every key is written in its own transaction. A failing key is recorded in
    :attr:`MergeReport.failed_keys` and the remaining keys are still applied;
    nothing is retried.
    """

    report = MergeReport()
    for row in rows:
        key = row[unique_key]
        try:
            outcome = store.upsert(key, row, merged_at=merged_at)
        except MergeWriteError as exc:
            _LOG.error("Failed to merge key %r: %s", key, exc)
            report.failed_keys[key] = str(exc)
            continue

        report.succeeded_keys.append(key)
        if outcome == INSERTED:
            report.inserted += 1
        elif outcome == UPDATED:
            report.updated += 1
        elif outcome == UNCHANGED:
            report.unchanged += 1
        else:
            raise ValueError(f"Unexpected upsert outcome: {outcome!r}")

    return report


# Helper functions


def _rank(
    row: Dict[str, Any],
    position: int,
    recency_field: str,
    tie_breaker: Optional[str],
) -> Tuple[Any, ...]:
    recency = row[recency_field]
    if tie_breaker == INGESTION_ORDER:
        return (recency, position)
    if tie_breaker:
        value = _tie_value(row.get(tie_breaker))
        return (recency, value is not None, value, canonical_json(row))
    return (recency, canonical_json(row))


def _tie_value(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        for cast in (int, float):
            try:
                return cast(text)
            except ValueError:
                continue
        if text == "":
            return None
    return value
