"""
Apply pending schema migrations.

Migrations are the ``NNN_name.sql`` files in ``migrations/``, applied in name
order. Each file runs in its own transaction together with its
schema_migrations bookkeeping row, so a failing file leaves no trace and
earlier files stay applied.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

if __package__ is None:  # Allow running as a script.
    sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import psycopg

from streamstats.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_CREATE_LEDGER = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version TEXT PRIMARY KEY,
        applied_at TIMESTAMPTZ DEFAULT NOW()
    )
"""


def pending_migrations(applied: set[str], migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    return [
        migration
        for migration in sorted(migrations_dir.glob("*.sql"))
        if migration.name not in applied
    ]


def applied_migrations(conn: psycopg.Connection) -> set[str]:
    with conn.transaction():
        conn.execute(_CREATE_LEDGER)
        rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    return {row[0] for row in rows}


def apply_migration(conn: psycopg.Connection, migration: Path) -> None:
    with conn.transaction():
        conn.execute(migration.read_text(encoding="utf-8"))
        conn.execute(
            "INSERT INTO schema_migrations (version) VALUES (%s)",
            (migration.name,),
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply pending streamstats schema migrations.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migrations without applying them.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if not any(MIGRATIONS_DIR.glob("*.sql")):
        logger.error(f"No migration files found in {MIGRATIONS_DIR}")
        return 1

    try:
        with get_connection() as conn:
            pending = pending_migrations(applied_migrations(conn))
            if not pending:
                logger.info("Schema is up to date.")
                return 0

            for migration in pending:
                if args.dry_run:
                    logger.info(f"Pending: {migration.name}")
                    continue
                logger.info(f"Applying {migration.name}...")
                apply_migration(conn, migration)
    except psycopg.Error as e:
        logger.error(f"Migration failed: {e}")
        return 1

    logger.info("Dry run complete." if args.dry_run else "Migrations complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
