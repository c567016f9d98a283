"""
Migration 003: Track merchant rule usage.

match_count counts synced transactions a rule categorized; last_matched_at
is the most recent of them.
"""

import sqlite3

VERSION = 3
NAME = "rule_usage"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add usage columns to merchant_rules."""
    conn.execute(
        "ALTER TABLE merchant_rules ADD COLUMN match_count INTEGER NOT NULL DEFAULT 0"
    )
    conn.execute("ALTER TABLE merchant_rules ADD COLUMN last_matched_at TEXT")
