import textwrap
from pathlib import Path

import pytest

from active_entities import ConfigError, EngineConfig, config_from_dict, load_config
from active_entities.config import resolve_schema, with_overrides

ROOT_DIR = Path(__file__).resolve().parents[1]


def _write(tmp_path, text):
    path = tmp_path / "project.yml"
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_load_config_reads_model_and_project_vars(tmp_path):
    path = _write(
        tmp_path,
        """
        vars:
          global_days_threshold: 45
          user: alice
        model:
          name: active_users
          unique_key: customer_id
          recency_field: last_booking_date
          lowercase_fields: [name]
          columns:
            customer_id: [not_null, unique]
        """,
    )

    config = load_config(path)

    assert config.days_threshold == 45
    assert config.lookback_days == 3
    assert config.user == "alice"
    assert config.table == "active_users"
    assert config.target_table == "alice__active_users"
    assert config.lowercase_fields == ["name"]
    assert config.columns == {"customer_id": ["not_null", "unique"]}


def test_model_threshold_wins_over_global_var(tmp_path):
    path = _write(
        tmp_path,
        """
        vars:
          global_days_threshold: 45
        model:
          unique_key: id
          recency_field: updated_on
          days_threshold: 7
          environment: prod
        """,
    )

    assert load_config(path).days_threshold == 7


def test_overrides_replace_file_values(tmp_path):
    path = _write(
        tmp_path,
        """
        vars:
          user: alice
        model:
          unique_key: id
          recency_field: updated_on
        """,
    )

    config = load_config(
        path, overrides={"environment": "prod", "lookback_days": 10, "user": None}
    )

    assert config.environment == "prod"
    assert config.lookback_days == 10
    assert config.target_table == "data__active_entities"


def test_shipped_project_file_is_valid():
    config = load_config(ROOT_DIR / "config" / "active_users.yml")
    assert config.unique_key == "customer_id"
    assert config.recency_field == "last_booking_date"
    assert config.days_threshold == 30


def test_missing_file_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yml")


def test_invalid_yaml_is_a_config_error(tmp_path):
    path = _write(tmp_path, "model: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_model_section_is_a_config_error(tmp_path):
    path = _write(tmp_path, "vars:\n  user: alice\n")
    with pytest.raises(ConfigError):
        load_config(path)


@pytest.mark.parametrize("missing", ["unique_key", "recency_field"])
def test_required_fields(missing):
    values = {"unique_key": "id", "recency_field": "updated_on", "environment": "prod"}
    del values[missing]
    with pytest.raises(ConfigError):
        config_from_dict(values)


@pytest.mark.parametrize(
    "overrides",
    [
        {"lookback_days": -1},
        {"days_threshold": -1},
        {"days_threshold": "30"},
        {"lookback_days": 2.5},
        {"recency_type": "month"},
        {"table": "users; DROP TABLE x"},
        {"environment": "dev"},
    ],
)
def test_invalid_values_are_rejected(overrides):
    values = {"unique_key": "id", "recency_field": "updated_on", "environment": "prod"}
    values.update(overrides)
    with pytest.raises(ConfigError):
        config_from_dict(values)


def test_unknown_keys_are_rejected():
    with pytest.raises(ConfigError):
        config_from_dict(
            {"unique_key": "id", "recency_field": "day", "environment": "prod", "typo": 1}
        )


def test_resolve_schema_uses_user_only_in_dev():
    assert resolve_schema("dev", "alice") == "alice"
    assert resolve_schema("prod", "alice") == "data"
    assert resolve_schema("staging", None) == "data"
    with pytest.raises(ConfigError):
        resolve_schema("dev", None)


def test_with_overrides_revalidates():
    config = EngineConfig(unique_key="id", recency_field="day", environment="prod")
    assert with_overrides(config, lookback_days=None).lookback_days == 3
    assert with_overrides(config, lookback_days=5).lookback_days == 5
    with pytest.raises(ConfigError):
        with_overrides(config, lookback_days=-2)
