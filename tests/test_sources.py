from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from active_entities import (
    CsvRowSource,
    InvalidRowError,
    RecencyPredicate,
    SqliteRowSource,
    SqliteTargetStore,
    run_pipeline,
)
from active_entities.sources import normalise_row

CSV_TEXT = (
    "customer_id,name,signup_date,last_booking_date,others\n"
    "C001,Alice Martin,2023-02-11,2024-06-01,dublin\n"
    "C001,Alice Martin,2023-02-11,2024-06-04,lisbon\n"
    "C002,Bruno Costa,,2024-05-30,porto\n"
)


@pytest.fixture()
def csv_path(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    return path


@pytest.fixture()
def users_table(conn):
    conn.execute(
        "CREATE TABLE users (customer_id TEXT, name TEXT, last_booking_date TEXT)"
    )
    conn.executemany(
        "INSERT INTO users VALUES (?, ?, ?)",
        [
            ("C001", "Alice", "2024-05-28"),
            ("C001", "Alice", "2024-05-30 18:45:00"),
            ("C002", "Bruno", "2024-05-29"),
            ("C003", "Chen", "2024-06-01"),
        ],
    )
    conn.commit()
    return "users"


def test_csv_source_normalises_rows(csv_path, config):
    config = replace(config, lowercase_fields=["name"], date_fields=["signup_date"])

    rows = list(CsvRowSource(csv_path, config).iter_rows())

    assert len(rows) == 3
    assert rows[0] == {
        "customer_id": "C001",
        "name": "alice martin",
        "signup_date": date(2023, 2, 11),
        "last_booking_date": date(2024, 6, 1),
        "others": "dublin",
    }
    assert rows[2]["signup_date"] is None


def test_csv_source_is_restartable_and_filters_in_memory(csv_path, config):
    source = CsvRowSource(csv_path, config)
    predicate = RecencyPredicate("last_booking_date", date(2024, 6, 1))

    assert not source.supports_pushdown
    assert len(list(source.iter_rows())) == 3
    assert [row["last_booking_date"] for row in source.iter_rows(predicate)] == [
        date(2024, 6, 4)
    ]


def test_inclusive_predicate():
    predicate = RecencyPredicate("day", date(2024, 6, 1), inclusive=True)
    assert predicate.matches({"day": date(2024, 6, 1)})
    assert not RecencyPredicate("day", date(2024, 6, 1)).matches({"day": date(2024, 6, 1)})


def test_sqlite_source_pushes_predicate_down(conn, config, users_table):
    source = SqliteRowSource(conn, users_table, config)
    predicate = RecencyPredicate("last_booking_date", date(2024, 5, 29))

    rows = list(source.iter_rows(predicate))

    assert source.supports_pushdown
    assert sorted((row["customer_id"], row["last_booking_date"]) for row in rows) == [
        ("C001", date(2024, 5, 30)),
        ("C003", date(2024, 6, 1)),
    ]


def test_sqlite_source_pushdown_reads_epoch_columns(conn, config):
    config = replace(config, recency_type="timestamp")
    conn.execute("CREATE TABLE events (customer_id TEXT, last_booking_date INTEGER)")
    conn.executemany(
        "INSERT INTO events VALUES (?, ?)",
        [("C001", 1717200000), ("C002", 1716163200), ("C003", 1717243200.5)],
    )
    conn.commit()
    predicate = RecencyPredicate(
        "last_booking_date", datetime(2024, 5, 29, tzinfo=timezone.utc)
    )

    rows = list(SqliteRowSource(conn, "events", config).iter_rows(predicate))

    assert sorted((row["customer_id"], row["last_booking_date"]) for row in rows) == [
        ("C001", datetime(2024, 6, 1, tzinfo=timezone.utc)),
        ("C003", datetime(2024, 6, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)),
    ]


def test_sqlite_source_leaves_unreadable_values_to_the_parser(conn, config):
    conn.execute("CREATE TABLE events (customer_id TEXT, last_booking_date TEXT)")
    conn.executemany(
        "INSERT INTO events VALUES (?, ?)",
        [("C001", "2024-06-01"), ("C002", "first of june")],
    )
    conn.commit()
    predicate = RecencyPredicate("last_booking_date", date(2024, 5, 29))

    with pytest.raises(InvalidRowError):
        list(SqliteRowSource(conn, "events", config).iter_rows(predicate))


def test_sqlite_source_feeds_incremental_runs(conn, config, users_table):
    store = SqliteTargetStore.from_config(conn, config)
    source = SqliteRowSource(conn, users_table, config)

    first = run_pipeline(config, source, store, now=date(2024, 6, 2))
    conn.execute("INSERT INTO users VALUES ('C002', 'Bruno', '2024-05-31')")
    conn.commit()
    second = run_pipeline(config, source, store, now=date(2024, 6, 2))

    assert first.report.inserted == 3
    assert second.source_candidates == 3
    assert second.report.updated == 1
    assert {row["customer_id"]: row["last_booking_date"] for row in store.fetch_rows()} == {
        "C001": date(2024, 5, 30),
        "C002": date(2024, 5, 31),
        "C003": date(2024, 6, 1),
    }


def test_csv_tie_breaker_compares_numbers(conn, tmp_path, config):
    path = tmp_path / "plans.csv"
    path.write_text(
        "customer_id,last_booking_date,seq,plan\n"
        "C001,2024-06-01,9,ninth\n"
        "C001,2024-06-01,10,tenth\n",
        encoding="utf-8",
    )
    config = replace(config, tie_breaker="seq")
    store = SqliteTargetStore.from_config(conn, config)

    result = run_pipeline(config, CsvRowSource(path, config), store, now=date(2024, 6, 2))

    (row,) = store.fetch_rows()
    assert result.report.inserted == 1
    assert row["plan"] == "tenth"
    assert row["seq"] == "10"

def test_sqlite_source_rejects_bad_table_name(conn, config):
    with pytest.raises(ValueError):
        SqliteRowSource(conn, "users; DROP TABLE users", config)


@pytest.mark.parametrize(
    "record",
    [
        {"last_booking_date": "2024-06-01"},
        {"customer_id": "  ", "last_booking_date": "2024-06-01"},
        {"customer_id": "C1"},
        {"customer_id": "C1", "last_booking_date": ""},
        {"customer_id": "C1", "last_booking_date": "not a date"},
    ],
)
def test_normalise_row_rejects_incomplete_records(config, record):
    with pytest.raises(InvalidRowError):
        normalise_row(record, config)


def test_normalise_row_truncates_timestamps_for_date_recency(config):
    row = normalise_row(
        {"customer_id": " C1 ", "last_booking_date": "2024-06-01T22:10:00Z"}, config
    )
    assert row == {"customer_id": "C1", "last_booking_date": date(2024, 6, 1)}
