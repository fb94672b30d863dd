"""Run the active entities incremental merge without Airflow."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from active_entities import (
    ActiveEntitiesError,
    CsvRowSource,
    SqliteTargetStore,
    connect,
    load_config,
    run_checks,
    run_pipeline,
)
from active_entities.timestamps import parse_instant

ROOT_DIR = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT_DIR / "config" / "active_users.yml"
DATA_PATH = ROOT_DIR / "data" / "users.csv"
DB_PATH = ROOT_DIR / "active_entities.db"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LOG = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help=f"YAML project file (default: {CONFIG_PATH})",
    )
    parser.add_argument(
        "--data-path",
        type=Path,
        default=DATA_PATH,
        help=f"Path to the source CSV (default: {DATA_PATH})",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=DB_PATH,
        help=f"Location of the SQLite database (default: {DB_PATH})",
    )
    parser.add_argument("--environment", help="Override the target environment")
    parser.add_argument("--user", help="Schema name used in the dev environment")
    parser.add_argument("--days-threshold", type=int, help="Override the active cutoff")
    parser.add_argument("--lookback-days", type=int, help="Override the lookback window")
    parser.add_argument(
        "--now",
        help="Run timestamp in ISO-8601 format (default: current UTC time)",
    )
    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="Do not run the configured column tests after merging",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        config = load_config(
            args.config,
            overrides={
                "environment": args.environment,
                "user": args.user,
                "days_threshold": args.days_threshold,
                "lookback_days": args.lookback_days,
            },
        )
        now = (
            parse_instant(args.now, "timestamp")
            if args.now
            else datetime.now(tz=timezone.utc)
        )
    except (ActiveEntitiesError, ValueError) as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2

    conn = connect(args.db_path)
    try:
        store = SqliteTargetStore.from_config(conn, config)
        source = CsvRowSource(args.data_path, config)
        try:
            result = run_pipeline(config, source, store, now=now)
        except ActiveEntitiesError:
            return 1

        print(json.dumps(result.to_dict(), indent=2))

        if args.skip_checks or not config.columns:
            return 0
        checks = run_checks(store.fetch_rows(), config.columns, now=now)
        for check in checks:
            level = logging.INFO if check.passed else logging.ERROR
            _LOG.log(level, "Data test %s(%s): %s", check.test, check.column, check.to_dict())
        return 0 if all(check.passed for check in checks) else 1
    finally:
        conn.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
