"""Engine configuration.

Configuration is resolved once, before a run starts, into an
:class:`EngineConfig`. It can be built directly, from a mapping with
:func:`config_from_dict`, or from a YAML project file with :func:`load_config`.

Example YAML::

    vars:
      global_days_threshold: 30
      user: alice

    model:
      name: active_users
      unique_key: customer_id
      recency_field: last_booking_date
      lookback_days: 3
      environment: dev
      lowercase_fields: [name]
      date_fields: [signup_date]
      columns:
        customer_id: [not_null, unique]
        signup_date:
          - not_null
          - accepted_range: {max_value: today}
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError
from .threshold import RECENCY_TYPES

_LOG = logging.getLogger(__name__)

DEFAULT_DAYS_THRESHOLD = 30
DEFAULT_LOOKBACK_DAYS = 3
DEFAULT_ENVIRONMENT = "dev"
PROD_SCHEMA = "data"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def resolve_schema(environment: str, user: Optional[str]) -> str:
    """Return the target schema: the user's own schema in dev, ``data`` elsewhere."""

    if environment == "dev":
        if not user:
            raise ConfigError("environment 'dev' requires a user name")
        return user
    return PROD_SCHEMA


@dataclass
class EngineConfig:
    """Resolved configuration for one incremental run."""

    unique_key: str
    recency_field: str
    days_threshold: int = DEFAULT_DAYS_THRESHOLD
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    recency_type: str = "date"
    tie_breaker: Optional[str] = None
    apply_threshold: bool = True
    environment: str = DEFAULT_ENVIRONMENT
    user: Optional[str] = None
    table: str = "active_entities"
    lowercase_fields: List[str] = field(default_factory=list)
    date_fields: List[str] = field(default_factory=list)
    columns: Dict[str, List[Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not self.unique_key:
            raise ConfigError("unique_key is required")
        if not self.recency_field:
            raise ConfigError("recency_field is required")
        if self.unique_key == self.recency_field:
            raise ConfigError("unique_key and recency_field must differ")
        _require_non_negative_int("days_threshold", self.days_threshold)
        _require_non_negative_int("lookback_days", self.lookback_days)
        if self.recency_type not in RECENCY_TYPES:
            raise ConfigError(
                f"recency_type must be one of {RECENCY_TYPES}, got {self.recency_type!r}"
            )
        if not self.environment:
            raise ConfigError("environment is required")
        for name in (self.table, self.schema):
            if not _IDENTIFIER.match(name):
                raise ConfigError(f"Invalid identifier: {name!r}")

    @property
    def schema(self) -> str:
        return resolve_schema(self.environment, self.user)

    @property
    def target_table(self) -> str:
        return f"{self.schema}__{self.table}"


def _require_non_negative_int(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")


_FIELD_NAMES = {f.name for f in fields(EngineConfig)}


def config_from_dict(
    data: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None
) -> EngineConfig:
    """Build a config from a flat mapping, applying non-``None`` overrides."""

    values = dict(data)
    for name, value in (overrides or {}).items():
        if value is not None:
            values[name] = value

    unknown = sorted(set(values) - _FIELD_NAMES)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {unknown}")
    for required in ("unique_key", "recency_field"):
        if required not in values:
            raise ConfigError(f"{required} is required")

    return EngineConfig(**values)


def load_config(
    path: str | Path, overrides: Optional[Mapping[str, Any]] = None
) -> EngineConfig:
    """Load an :class:`EngineConfig` from a YAML project file."""

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(document, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    project_vars = document.get("vars") or {}
    model = document.get("model")
    if not isinstance(model, dict):
        raise ConfigError(f"{config_path} is missing the 'model' section")

    values = dict(model)
    if "name" in values:
        values["table"] = values.pop("name")
    if "days_threshold" not in values and "global_days_threshold" in project_vars:
        values["days_threshold"] = project_vars["global_days_threshold"]
    if "user" not in values and "user" in project_vars:
        values["user"] = project_vars["user"]

    config = config_from_dict(values, overrides)
    _LOG.debug(
        "Loaded config from %s: target=%s threshold=%s lookback=%s",
        config_path,
        config.target_table,
        config.days_threshold,
        config.lookback_days,
    )
    return config


def with_overrides(config: EngineConfig, **overrides: Any) -> EngineConfig:
    """Return a copy of ``config`` with the non-``None`` overrides applied."""

    return replace(config, **{k: v for k, v in overrides.items() if v is not None})
