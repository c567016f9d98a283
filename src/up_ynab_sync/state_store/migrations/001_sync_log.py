"""
Migration 001: Add sync_log table.

One row per completed (non dry-run) sync, used by the status command.
"""

import sqlite3

VERSION = 1
NAME = "sync_log"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create sync_log table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL UNIQUE,
            started_at TEXT NOT NULL,
            finished_at TEXT NOT NULL,
            range_start TEXT NOT NULL,
            range_end TEXT NOT NULL,
            dry_run INTEGER NOT NULL DEFAULT 0,
            accounts INTEGER NOT NULL DEFAULT 0,
            processed INTEGER NOT NULL DEFAULT 0,
            synced INTEGER NOT NULL DEFAULT 0,
            failed INTEGER NOT NULL DEFAULT 0,
            duplicate INTEGER NOT NULL DEFAULT 0,
            skipped INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            is_success INTEGER NOT NULL DEFAULT 1,
            duration_seconds REAL NOT NULL DEFAULT 0
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_finished ON sync_log(finished_at)")
