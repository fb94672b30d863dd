"""Airflow DAG running the active entities incremental merge."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

try:
    from airflow import DAG
    from airflow.operators.python import PythonOperator
except ImportError as exc:  # Airflow is optional for tests
    raise RuntimeError(
        "apache airflow must be installed to use the DAG. Install the optional "
        "dependency with `pip install -e .[airflow]`."
    ) from exc

from active_entities import (
    CsvRowSource,
    SqliteTargetStore,
    connect,
    load_config,
    run_checks,
    run_pipeline,
)
from active_entities.config import with_overrides
from scripts import run_pipeline as cli

_LOG = logging.getLogger(__name__)


def _config(context: Dict[str, Any]):
    config = load_config(cli.CONFIG_PATH)
    dag_run = context.get("dag_run")
    if dag_run and dag_run.conf:
        config = with_overrides(
            config,
            environment=dag_run.conf.get("environment"),
            days_threshold=dag_run.conf.get("days_threshold"),
            lookback_days=dag_run.conf.get("lookback_days"),
        )
    return config


def merge_fn(**context: Any) -> Dict[str, Any]:
    """Merge the source CSV into the target table."""

    config = _config(context)
    now = context["logical_date"].astimezone(timezone.utc)
    conn = connect(cli.DB_PATH)
    try:
        store = SqliteTargetStore.from_config(conn, config)
        source = CsvRowSource(cli.DATA_PATH, config)
        result = run_pipeline(config, source, store, now=now)
    finally:
        conn.close()

    payload = result.to_dict()
    _LOG.info("Merge result: %s", payload)
    return payload


def check_fn(**context: Any) -> None:
    """Run the configured column tests on the merged table."""

    config = _config(context)
    conn = connect(cli.DB_PATH)
    try:
        rows = SqliteTargetStore.from_config(conn, config).fetch_rows()
    finally:
        conn.close()

    now = context["logical_date"].astimezone(timezone.utc)
    checks = run_checks(rows, config.columns, now=now)
    failed = [check.to_dict() for check in checks if not check.passed]
    if failed:
        raise ValueError(f"Data tests failed on {config.target_table}: {failed}")
    _LOG.info("All data tests passed on %s", config.target_table)


with DAG(
    dag_id="active_entities_incremental",
    schedule="@daily",
    start_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
    catchup=False,
    max_active_runs=1,
    tags=["demo", "incremental"],
) as dag:
    merge_task = PythonOperator(task_id="merge", python_callable=merge_fn)
    check_task = PythonOperator(task_id="check", python_callable=check_fn)

    merge_task >> check_task
