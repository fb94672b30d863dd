"""Row sources feeding the engine.

A row source yields normalised entity rows: plain dictionaries whose key is
non-null and whose recency field is parsed into a ``date`` or UTC
``datetime``. Sources are restartable; every call to :meth:`iter_rows` reads
from the beginning.
"""

from __future__ import annotations

import csv
import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .config import EngineConfig
from .errors import ConfigError, InvalidRowError, SourceReadError
from .timestamps import Instant, as_utc_datetime, format_instant, parse_instant

_LOG = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class RecencyPredicate:
    """``row[field] > lower_bound`` (``>=`` when ``inclusive``)."""

    field: str
    lower_bound: Instant
    inclusive: bool = False

    def matches(self, row: Dict[str, Any]) -> bool:
        value = row[self.field]
        if self.inclusive:
            return value >= self.lower_bound
        return value > self.lower_bound


class RowSource:
    """Base class for row sources.

    Subclasses implement :meth:`_read` to yield raw records. Sources that set
    ``supports_pushdown`` narrow the read with the predicate themselves;
    every row is still checked against it after normalisation.
    """

    supports_pushdown = False

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def iter_rows(
        self, predicate: Optional[RecencyPredicate] = None
    ) -> Iterator[Dict[str, Any]]:
        for record in self._read(predicate if self.supports_pushdown else None):
            row = normalise_row(record, self.config)
            if predicate is None or predicate.matches(row):
                yield row

    def _read(
        self, predicate: Optional[RecencyPredicate]
    ) -> Iterable[Dict[str, Any]]:
        raise NotImplementedError


class InMemoryRowSource(RowSource):
    """Rows held in a list, mostly useful for tests and small backfills."""

    def __init__(self, rows: Iterable[Dict[str, Any]], config: EngineConfig) -> None:
        super().__init__(config)
        self.rows: List[Dict[str, Any]] = [dict(row) for row in rows]

    def _read(self, predicate):
        return iter(self.rows)


class CsvRowSource(RowSource):
    """Rows read from a CSV file with a header line."""

    def __init__(self, path: str | Path, config: EngineConfig) -> None:
        super().__init__(config)
        self.path = Path(path)

    def _read(self, predicate):
        try:
            with self.path.open("r", encoding="utf-8", newline="") as handle:
                reader = csv.DictReader(handle)
                for record in reader:
                    yield dict(record)
        except (OSError, csv.Error) as exc:
            raise SourceReadError(f"Failed reading {self.path}: {exc}") from exc


class SqliteRowSource(RowSource):
    """Rows read from a SQLite table.

    The recency predicate is pushed down as a day-granular filter on the UTC
    date of the stored value: text goes through ``DATE()``, integer and real
    values are read as Unix epochs. Values SQLite cannot turn into a date are
    kept, so the filter only narrows the read and the predicate decides.
    """

    supports_pushdown = True

    def __init__(
        self, conn: sqlite3.Connection, table: str, config: EngineConfig
    ) -> None:
        super().__init__(config)
        if not _IDENTIFIER.match(table):
            raise ConfigError(f"Invalid source table name: {table!r}")
        self.conn = conn
        self.table = table

    def _read(self, predicate):
        query = f'SELECT * FROM "{self.table}"'
        params: List[object] = []
        if predicate is not None:
            day = _sql_day(predicate.field)
            query += f" WHERE {day} IS NULL OR {day} >= ?"
            params.append(format_instant(as_utc_datetime(predicate.lower_bound).date()))
            _LOG.debug("Pushing recency filter down to %s: %s", self.table, params[0])

        try:
            cursor = self.conn.execute(query, params)
            columns = [description[0] for description in cursor.description]
            for values in cursor:
                yield dict(zip(columns, values))
        except sqlite3.Error as exc:
            raise SourceReadError(f"Failed reading table {self.table}: {exc}") from exc


def _sql_day(field: str) -> str:
    column = '"' + field.replace('"', '""') + '"'
    return (
        f"(CASE WHEN typeof({column}) IN ('integer', 'real') "
        f"THEN DATE({column}, 'unixepoch') ELSE DATE({column}) END)"
    )


def normalise_row(record: Dict[str, Any], config: EngineConfig) -> Dict[str, Any]:
    """Validate and normalise a raw source record.

    The key must be present and non-empty and the recency value must parse.
    ``date_fields`` are parsed to dates (empty values become ``None``) and
    ``lowercase_fields`` are lowercased.
    """

    row = dict(record)

    key = row.get(config.unique_key)
    if isinstance(key, str):
        key = key.strip()
    if key is None or key == "":
        raise InvalidRowError(f"record missing '{config.unique_key}': {record!r}")
    row[config.unique_key] = key

    raw_recency = row.get(config.recency_field)
    if raw_recency is None or raw_recency == "":
        raise InvalidRowError(
            f"record for key {key!r} missing '{config.recency_field}'"
        )
    try:
        row[config.recency_field] = parse_instant(raw_recency, config.recency_type)
    except (TypeError, ValueError) as exc:
        raise InvalidRowError(
            f"record for key {key!r} has invalid '{config.recency_field}': {raw_recency!r}"
        ) from exc

    for name in config.date_fields:
        if name == config.recency_field or name not in row:
            continue
        value = row[name]
        if value is None or value == "":
            row[name] = None
            continue
        try:
            row[name] = parse_instant(value, "date")
        except (TypeError, ValueError) as exc:
            raise InvalidRowError(
                f"record for key {key!r} has invalid date in '{name}': {value!r}"
            ) from exc

    for name in config.lowercase_fields:
        if isinstance(row.get(name), str):
            row[name] = row[name].lower()

    return row
