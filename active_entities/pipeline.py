"""Run orchestration for one incremental merge of the active entities table."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import EngineConfig
from .errors import MergeWriteError
from .merge_logic import (
    MergeReport,
    RunState,
    apply_merge,
    dedupe,
    filter_active,
    select_candidates,
)
from .sources import RowSource
from .threshold import threshold
from .timestamps import DEFAULT_TZ, Instant, ensure_utc, format_instant

_LOG = logging.getLogger(__name__)


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    DETERMINING_RUN_TYPE = "determining_run_type"
    SELECTING_CANDIDATES = "selecting_candidates"
    DEDUPLICATING = "deduplicating"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})


@dataclass
class RunResult:
    """Summary of a finished (or failed) run."""

    status: RunStatus
    target_table: str
    now: datetime
    run_state: Optional[RunState] = None
    source_candidates: int = 0
    active_candidates: int = 0
    deduplicated: int = 0
    report: MergeReport = field(default_factory=MergeReport)
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return a serialisable representation of the result."""

        return {
            "status": self.status.value,
            "target_table": self.target_table,
            "now": format_instant(self.now),
            "run_state": self.run_state.to_dict() if self.run_state else None,
            "source_candidates": self.source_candidates,
            "active_candidates": self.active_candidates,
            "deduplicated": self.deduplicated,
            "merge": self.report.to_dict(),
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


class IncrementalRun:
    """Drive a single run: run type, candidates, dedupe, merge.

    An instance runs once. Nothing is kept between runs; the target table is
    the only record of what has been processed. Callers must not run two
    instances against the same target table at the same time.
    """

    def __init__(
        self,
        config: EngineConfig,
        source: RowSource,
        store: Any,
        *,
        now: Optional[Instant] = None,
    ) -> None:
        self.config = config
        self.source = source
        self.store = store
        if now is None:
            now = datetime.now(tz=DEFAULT_TZ)
        elif not isinstance(now, datetime):
            now = datetime(now.year, now.month, now.day, tzinfo=DEFAULT_TZ)
        self.now = ensure_utc(now)
        self.status = RunStatus.NOT_STARTED
        self.history: List[RunStatus] = [RunStatus.NOT_STARTED]
        self.result = RunResult(
            status=self.status, target_table=config.target_table, now=self.now
        )

    def run(self) -> RunResult:
        """Execute the run and return its result.

        Errors move the run to ``FAILED`` and propagate to the caller;
        :attr:`result` still describes how far the run got.
        """

        if self.status is not RunStatus.NOT_STARTED:
            raise RuntimeError(f"Run already executed (status: {self.status.value})")

        config = self.config
        result = self.result
        started = time.monotonic()
        _LOG.info("Starting run for %s", config.target_table)

        try:
            self._transition(RunStatus.DETERMINING_RUN_TYPE)
            run_state = self._determine_run_type()
            result.run_state = run_state

            self._transition(RunStatus.SELECTING_CANDIDATES)
            candidates = select_candidates(
                self.source, run_state, config.lookback_days, config.recency_field
            )
            result.source_candidates = len(candidates)
            if config.apply_threshold:
                candidates = filter_active(
                    candidates, run_state.cutoff_instant, config.recency_field
                )
            result.active_candidates = len(candidates)

            self._transition(RunStatus.DEDUPLICATING)
            rows = dedupe(
                candidates,
                config.unique_key,
                config.recency_field,
                tie_breaker=config.tie_breaker,
            )
            result.deduplicated = len(rows)

            self._transition(RunStatus.MERGING)
            self.store.initialize()
            result.report = apply_merge(
                self.store, rows, config.unique_key, merged_at=self.now
            )
            if not result.report.ok:
                raise MergeWriteError(
                    f"{len(result.report.failed_keys)} of {len(rows)} keys failed "
                    f"to merge into {config.target_table}",
                    report=result.report,
                )
        except Exception as exc:
            result.duration_seconds = time.monotonic() - started
            result.error = str(exc)
            failed_in = self.status
            self._transition(RunStatus.FAILED)
            _LOG.exception(
                "Run for %s failed while %s", config.target_table, failed_in.value
            )
            raise

        result.duration_seconds = time.monotonic() - started
        self._transition(RunStatus.COMPLETED)
        _LOG.info("Run summary: %s", result.to_dict())
        return result

    def _determine_run_type(self) -> RunState:
        is_first_run = not self.store.exists_any()
        watermark = None if is_first_run else self.store.get_watermark()
        cutoff = threshold(
            self.now, self.config.days_threshold, self.config.recency_type
        )
        _LOG.info(
            "%s run for %s (watermark: %s, cutoff: %s)",
            "First" if is_first_run else "Incremental",
            self.config.target_table,
            format_instant(watermark),
            format_instant(cutoff),
        )
        return RunState(
            is_first_run=is_first_run, cutoff_instant=cutoff, watermark=watermark
        )

    def _transition(self, status: RunStatus) -> None:
        if self.status in TERMINAL_STATUSES:
            raise RuntimeError(f"Run already finished (status: {self.status.value})")
        _LOG.debug(
            "Run %s: %s -> %s", self.config.target_table, self.status.value, status.value
        )
        self.status = status
        self.result.status = status
        self.history.append(status)


def run_pipeline(
    config: EngineConfig,
    source: RowSource,
    store: Any,
    *,
    now: Optional[Instant] = None,
) -> RunResult:
    """Run the incremental merge once and return its result."""

    return IncrementalRun(config, source, store, now=now).run()
