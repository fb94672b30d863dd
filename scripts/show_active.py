"""CLI helper to print the current contents of the active entities table."""

from __future__ import annotations

import argparse
from pathlib import Path

from active_entities import SqliteTargetStore, connect, load_config
from active_entities.serialization import canonical_json

ROOT_DIR = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT_DIR / "config" / "active_users.yml"
DB_PATH = ROOT_DIR / "active_entities.db"


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, default=CONFIG_PATH)
    parser.add_argument("--db-path", type=Path, default=DB_PATH)
    parser.add_argument("--environment", help="Override the target environment")
    parser.add_argument("--user", help="Schema name used in the dev environment")
    args = parser.parse_args()

    config = load_config(
        args.config, overrides={"environment": args.environment, "user": args.user}
    )
    conn = connect(args.db_path)
    try:
        rows = SqliteTargetStore.from_config(conn, config).fetch_rows()
    finally:
        conn.close()

    for row in rows:
        print(canonical_json(row))
    if not rows:
        print(f"No rows found in {config.target_table}.")


if __name__ == "__main__":  # pragma: no cover
    main()
