"""
Migration 002: Add merchant_rules table.

Rules are scoped by profile and unique per pattern within a profile.
The autoincrement id doubles as registration order for tie-breaking.
"""

import sqlite3

VERSION = 2
NAME = "merchant_rules"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create merchant_rules table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS merchant_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            profile_id TEXT NOT NULL,
            pattern TEXT NOT NULL,
            payee_name TEXT NOT NULL,
            category_id TEXT,
            category_name TEXT,
            priority INTEGER NOT NULL DEFAULT 0,
            confidence REAL NOT NULL DEFAULT 1.0,
            is_regex INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (profile_id, pattern)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_merchant_rules_profile ON merchant_rules(profile_id)"
    )
