from datetime import date, datetime, timezone

import pytest

from active_entities import ConfigError, run_checks

NOW = datetime(2024, 6, 10, tzinfo=timezone.utc)

COLUMNS = {
    "customer_id": ["not_null", "unique"],
    "name": ["not_null"],
    "signup_date": ["not_null", {"accepted_range": {"max_value": "today"}}],
}


def _results(rows, columns=COLUMNS):
    return {(r.column, r.test): r for r in run_checks(rows, columns, now=NOW)}


def test_clean_rows_pass_every_test():
    rows = [
        {"customer_id": "C1", "name": "alice", "signup_date": date(2023, 1, 1)},
        {"customer_id": "C2", "name": "bruno", "signup_date": "2024-06-10"},
    ]

    results = _results(rows)

    assert len(results) == 5
    assert all(result.passed for result in results.values())


def test_failures_are_counted_per_test():
    rows = [
        {"customer_id": "C1", "name": None, "signup_date": date(2024, 6, 11)},
        {"customer_id": "C1", "name": "", "signup_date": None},
    ]

    results = _results(rows)

    assert results[("customer_id", "unique")].failures == 1
    assert results[("customer_id", "unique")].sample == ["C1"]
    assert results[("name", "not_null")].failures == 2
    assert results[("signup_date", "not_null")].failures == 1
    range_check = results[("signup_date", "accepted_range")]
    assert range_check.failures == 1
    assert range_check.to_dict()["sample"] == ["2024-06-11"]


def test_numeric_range():
    columns = {"nights": [{"accepted_range": {"min_value": 1, "max_value": 30}}]}
    rows = [{"nights": 0}, {"nights": 5}, {"nights": 31}, {"nights": "many"}]

    (result,) = run_checks(rows, columns, now=NOW)

    assert result.failures == 3


@pytest.mark.parametrize(
    "columns",
    [
        {"id": ["positive"]},
        {"id": [{"accepted_range": {}}]},
        {"id": [{"not_null": None, "unique": None}]},
    ],
)
def test_invalid_test_definitions(columns):
    with pytest.raises(ConfigError):
        run_checks([{"id": 1}], columns, now=NOW)
