"""
Versioned schema migrations for the sync state database.

Each migration module is named NNN_name.py and defines VERSION, NAME,
upgrade(conn). Applied versions are recorded in the `migrations` table;
migrations only move forward.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Discover migration modules next to this file, ordered by version."""
    found: list[Migration] = []

    for path in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        found.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
            )
        )

    versions = [m.version for m in found]
    if len(versions) != len(set(versions)):
        raise RuntimeError(f"Duplicate migration versions: {versions}")

    return sorted(found, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations on one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def applied_versions(self) -> set[int]:
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def current_version(self) -> int:
        return max(self.applied_versions(), default=0)

    def _apply(self, migration: Migration) -> None:
        logger.info("Applying migration %03d_%s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d_%s failed", migration.version, migration.name)
            raise

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns the versions applied."""
        done = self.applied_versions()
        applied: list[int] = []
        for migration in get_all_migrations():
            if migration.version in done:
                continue
            self._apply(migration)
            applied.append(migration.version)

        if applied:
            logger.info("Applied migrations: %s", applied)
        return applied

