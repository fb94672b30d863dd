import sqlite3
from typing import Iterator

import pytest

from active_entities import EngineConfig, SqliteTargetStore


@pytest.fixture()
def conn() -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(":memory:")
    connection.row_factory = sqlite3.Row
    yield connection
    connection.close()


@pytest.fixture()
def config() -> EngineConfig:
    return EngineConfig(
        unique_key="customer_id",
        recency_field="last_booking_date",
        days_threshold=30,
        lookback_days=3,
        environment="dev",
        user="tester",
        table="active_users",
    )


@pytest.fixture()
def store(conn: sqlite3.Connection, config: EngineConfig) -> SqliteTargetStore:
    return SqliteTargetStore.from_config(conn, config)
