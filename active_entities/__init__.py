"""Incremental merge and deduplication of the active entities table."""

from .checks import CheckResult, run_checks
from .config import EngineConfig, config_from_dict, load_config, resolve_schema
from .errors import (
    ActiveEntitiesError,
    ConfigError,
    InvalidRowError,
    MergeWriteError,
    SourceReadError,
)
from .merge_logic import (
    INGESTION_ORDER,
    MergeReport,
    RunState,
    apply_merge,
    dedupe,
    filter_active,
    select_candidates,
)
from .pipeline import IncrementalRun, RunResult, RunStatus, run_pipeline
from .sources import (
    CsvRowSource,
    InMemoryRowSource,
    RecencyPredicate,
    RowSource,
    SqliteRowSource,
)
from .store import SqliteTargetStore, connect
from .threshold import threshold

__all__ = [
    "ActiveEntitiesError",
    "CheckResult",
    "ConfigError",
    "CsvRowSource",
    "EngineConfig",
    "INGESTION_ORDER",
    "InMemoryRowSource",
    "IncrementalRun",
    "InvalidRowError",
    "MergeReport",
    "MergeWriteError",
    "RecencyPredicate",
    "RowSource",
    "RunResult",
    "RunState",
    "RunStatus",
    "SourceReadError",
    "SqliteRowSource",
    "SqliteTargetStore",
    "apply_merge",
    "config_from_dict",
    "connect",
    "dedupe",
    "filter_active",
    "load_config",
    "resolve_schema",
    "run_checks",
    "run_pipeline",
    "select_candidates",
    "threshold",
]
