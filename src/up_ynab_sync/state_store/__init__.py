"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Import tokens synced to YNAB (and failures awaiting retry)
- Sync run history
- Merchant rules per profile

Enforces uniqueness on import token.
"""

from .sqlite_store import (
    RecordStatus,
    RuleStats,
    StateStore,
    StoreHealth,
    SyncLogEntry,
    SyncRecord,
)

__all__ = [
    "StateStore",
    "RecordStatus",
    "RuleStats",
    "StoreHealth",
    "SyncLogEntry",
    "SyncRecord",
]
