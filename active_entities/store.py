"""SQLite target table holding exactly one row per entity key.

The table is keyed by ``entity_key`` so uniqueness holds at all times, not
only after a successful run. Each stored row keeps:

* ``recency``: the row's recency value as sortable ISO-8601 text,
* ``payload``: the full row as canonical JSON,
* ``merged_at``: when the row was last written with a change.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigError, MergeWriteError, SourceReadError
from .serialization import canonical_json
from .timestamps import (
    DEFAULT_TZ,
    Instant,
    format_instant,
    parse_instant,
)

_LOG = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Create a SQLite connection with sensible defaults."""

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


class SqliteTargetStore:
    """Keyed target table on top of a SQLite connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        table: str,
        recency_field: str,
        recency_type: str = "date",
    ) -> None:
        if not _IDENTIFIER.match(table):
            raise ConfigError(f"Invalid target table name: {table!r}")
        self.conn = conn
        self.table = table
        self.recency_field = recency_field
        self.recency_type = recency_type

    @classmethod
    def from_config(cls, conn: sqlite3.Connection, config: Any) -> "SqliteTargetStore":
        """Build the store for the config's environment-qualified target table."""

        return cls(conn, config.target_table, config.recency_field, config.recency_type)

    def initialize(self) -> None:
        """Create the target table and its index if they do not exist."""

        try:
            self._create_table()
        except sqlite3.Error as exc:
            raise MergeWriteError(
                f"Cannot create target table {self.table}: {exc}"
            ) from exc
        _LOG.debug("Initialised target table %s", self.table)

    def _create_table(self) -> None:
        self.conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS "{self.table}" (
                entity_key NOT NULL PRIMARY KEY,
                recency TEXT NOT NULL,
                payload TEXT NOT NULL,
                merged_at TEXT NOT NULL
            )
            """
        )
        self.conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS "idx_{self.table}_recency"
                ON "{self.table}" (recency)
            """
        )
        self.conn.commit()

    def table_exists(self) -> bool:
        cursor = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self.table,),
        )
        return cursor.fetchone() is not None

    def exists_any(self) -> bool:
        """Return ``True`` when the table exists and holds at least one row."""

        try:
            if not self.table_exists():
                return False
            cursor = self.conn.execute(f'SELECT 1 FROM "{self.table}" LIMIT 1')
            return cursor.fetchone() is not None
        except sqlite3.Error as exc:
            raise SourceReadError(f"Cannot read target table {self.table}: {exc}") from exc

    def get_watermark(self) -> Optional[Instant]:
        """Return the maximum recency value stored, or ``None`` when empty."""

        try:
            if not self.table_exists():
                return None
            cursor = self.conn.execute(f'SELECT MAX(recency) FROM "{self.table}"')
            row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise SourceReadError(f"Cannot read watermark of {self.table}: {exc}") from exc
        if row is None or row[0] is None:
            return None
        return parse_instant(row[0], self.recency_type)

    def upsert(
        self,
        key: Any,
        row: Dict[str, Any],
        *,
        merged_at: Optional[datetime] = None,
    ) -> str:
        """Insert ``row`` or replace the stored row for ``key`` as a whole.

        The write runs in its own transaction. An identical stored row is left
        untouched and reported as unchanged.
        """

        if merged_at is None:
            merged_at = datetime.now(tz=DEFAULT_TZ)

        try:
            payload = canonical_json(row)
            recency_iso = format_instant(row[self.recency_field])
        except (KeyError, TypeError, ValueError) as exc:
            raise MergeWriteError(
                f"Cannot serialise row for key {key!r}: {exc}", key=key
            ) from exc

        try:
            with self.conn:
                existing = self.conn.execute(
                    f'SELECT payload FROM "{self.table}" WHERE entity_key = ?',
                    (key,),
                ).fetchone()
                if existing is not None and existing[0] == payload:
                    return UNCHANGED

                self.conn.execute(
                    f'INSERT INTO "{self.table}" '
                    "(entity_key, recency, payload, merged_at) VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(entity_key) DO UPDATE SET "
                    "recency = excluded.recency, "
                    "payload = excluded.payload, "
                    "merged_at = excluded.merged_at",
                    (key, recency_iso, payload, format_instant(merged_at)),
                )
        except sqlite3.Error as exc:
            raise MergeWriteError(
                f"Upsert failed for key {key!r}: {exc}", key=key
            ) from exc

        return INSERTED if existing is None else UPDATED

    def fetch_rows(self) -> List[Dict[str, Any]]:
        """Return every stored row, ordered by key, with recency parsed."""

        if not self.table_exists():
            return []
        cursor = self.conn.execute(
            f'SELECT payload FROM "{self.table}" ORDER BY entity_key'
        )
        rows = []
        for record in cursor.fetchall():
            row = json.loads(record[0])
            row[self.recency_field] = parse_instant(
                row[self.recency_field], self.recency_type
            )
            rows.append(row)
        return rows

    def count(self) -> int:
        if not self.table_exists():
            return 0
        cursor = self.conn.execute(f'SELECT COUNT(*) FROM "{self.table}"')
        return int(cursor.fetchone()[0])
