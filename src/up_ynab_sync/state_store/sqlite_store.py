"""
SQLite-based state store implementation.

Tables:
- synced_transactions: One row per import token (synced or failed)
- sync_log: One row per completed run (migration 001)
- merchant_rules: Categorization rules per profile (migration 002), with usage
  counters (migration 003)

A row with status SYNCED is never downgraded, so an import token can be
marked synced at most once.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..schemas.transactions import MerchantRule
from .migrations import MigrationRunner

if TYPE_CHECKING:
    from ..schemas.sync_result import SyncError, SyncResult
    from ..schemas.transactions import AccountMapping, SourceTransaction

logger = logging.getLogger(__name__)

TOKEN_LOCK_STRIPES = 64


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _to_iso(value: datetime | None) -> str:
    if value is None:
        return _now_iso()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class RecordStatus(str, Enum):
    """Durable status of an import token."""

    SYNCED = "SYNCED"
    FAILED = "FAILED"


@dataclass
class SyncRecord:
    """Record of one import token."""

    import_token: str
    status: RecordStatus
    source_transaction_id: str | None
    source_account_id: str | None
    destination_account_id: str | None
    destination_transaction_id: str | None
    source_amount: int | None
    destination_amount: int | None
    transaction_date: str | None
    description: str | None
    error_type: str | None
    error_message: str | None
    attempts: int
    created_at: str
    updated_at: str
    synced_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncRecord:
        """Create from database row."""
        return cls(
            import_token=row["import_token"],
            status=RecordStatus(row["status"]),
            source_transaction_id=row["source_transaction_id"],
            source_account_id=row["source_account_id"],
            destination_account_id=row["destination_account_id"],
            destination_transaction_id=row["destination_transaction_id"],
            source_amount=row["source_amount"],
            destination_amount=row["destination_amount"],
            transaction_date=row["transaction_date"],
            description=row["description"],
            error_type=row["error_type"],
            error_message=row["error_message"],
            attempts=row["attempts"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            synced_at=row["synced_at"],
        )


@dataclass
class StoreHealth:
    """Snapshot of the state database."""

    total_records: int
    synced_records: int
    failed_transactions: int
    oldest_record: datetime | None
    integrity_ok: bool
    schema_version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "synced_records": self.synced_records,
            "failed_transactions": self.failed_transactions,
            "oldest_record": self.oldest_record.isoformat() if self.oldest_record else None,
            "integrity_ok": self.integrity_ok,
            "schema_version": self.schema_version,
        }


@dataclass
class SyncLogEntry:
    """Record of one sync run."""

    id: int
    run_id: str
    started_at: str
    finished_at: str
    range_start: str
    range_end: str
    dry_run: bool
    accounts: int
    processed: int
    synced: int
    failed: int
    duplicate: int
    skipped: int
    error_count: int
    is_success: bool
    duration_seconds: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncLogEntry:
        """Create from database row."""
        return cls(
            id=row["id"],
            run_id=row["run_id"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            range_start=row["range_start"],
            range_end=row["range_end"],
            dry_run=bool(row["dry_run"]),
            accounts=row["accounts"],
            processed=row["processed"],
            synced=row["synced"],
            failed=row["failed"],
            duplicate=row["duplicate"],
            skipped=row["skipped"],
            error_count=row["error_count"],
            is_success=bool(row["is_success"]),
            duration_seconds=row["duration_seconds"],
        )


@dataclass
class RuleStats:
    """Usage of one merchant rule."""

    pattern: str
    category_name: str | None
    match_count: int
    last_matched_at: datetime | None


class StateStore:
    """
    SQLite-based sync state store.

    Provides persistent tracking of:
    - Which import tokens have been synced (and to which YNAB transaction)
    - Failed submissions awaiting review or retry
    - Run history
    - Merchant rules

    Writes are serialized with a store-wide lock. `token_lock()` adds a
    per-token lock so check-create-mark for one token is atomic across the
    threads of a run. Tokens share a fixed pool of TOKEN_LOCK_STRIPES locks,
    so two tokens may contend but memory stays bounded.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.RLock()
        self._token_locks = [threading.Lock() for _ in range(TOKEN_LOCK_STRIPES)]
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Synced transactions, keyed by import token
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS synced_transactions (
                    import_token TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    source_transaction_id TEXT,
                    source_account_id TEXT,
                    destination_account_id TEXT,
                    destination_transaction_id TEXT,
                    source_amount INTEGER,
                    destination_amount INTEGER,
                    transaction_date TEXT,
                    description TEXT,
                    error_type TEXT,
                    error_message TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    synced_at TEXT
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_synced_status ON synced_transactions(status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_synced_account ON synced_transactions(source_account_id)"
            )

            # Set schema version
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Locking

    def _lock_for(self, import_token: str) -> threading.Lock:
        return self._token_locks[zlib.crc32(import_token.encode()) % TOKEN_LOCK_STRIPES]

    @contextmanager
    def token_lock(self, import_token: str) -> Iterator[None]:
        """Hold the token's lock for a check-create-mark sequence."""
        with self._lock_for(import_token):
            yield

    # Sync state methods

    def is_synced(self, import_token: str) -> bool:
        """Check if the token was successfully synced."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM synced_transactions WHERE import_token = ? AND status = ?",
                (import_token, RecordStatus.SYNCED.value),
            ).fetchone()
            return row is not None

    def get_record(self, import_token: str) -> SyncRecord | None:
        """Get the record for a token."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM synced_transactions WHERE import_token = ?", (import_token,)
            ).fetchone()
            return SyncRecord.from_row(row) if row else None

    def mark_synced(
        self,
        import_token: str,
        destination_id: str | None,
        timestamp: datetime | None = None,
        source_transaction: SourceTransaction | None = None,
        mapping: AccountMapping | None = None,
        destination_amount: int | None = None,
        transaction_date: str | None = None,
    ) -> None:
        """
        Record a token as synced.

        Upserts: a previously failed token becomes SYNCED and its error is
        cleared. An already-synced token keeps its original destination id.
        """
        synced_at = _to_iso(timestamp)
        now = _now_iso()

        with self._write_lock, self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO synced_transactions
                (import_token, status, source_transaction_id, source_account_id,
                 destination_account_id, destination_transaction_id, source_amount,
                 destination_amount, transaction_date, description, attempts,
                 created_at, updated_at, synced_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(import_token) DO UPDATE SET
                    status = excluded.status,
                    destination_transaction_id = COALESCE(
                        synced_transactions.destination_transaction_id,
                        excluded.destination_transaction_id
                    ),
                    destination_account_id = COALESCE(
                        excluded.destination_account_id,
                        synced_transactions.destination_account_id
                    ),
                    destination_amount = COALESCE(
                        excluded.destination_amount,
                        synced_transactions.destination_amount
                    ),
                    error_type = NULL,
                    error_message = NULL,
                    attempts = synced_transactions.attempts + 1,
                    updated_at = excluded.updated_at,
                    synced_at = COALESCE(synced_transactions.synced_at, excluded.synced_at)
                WHERE synced_transactions.status != 'SYNCED'
            """,
                (
                    import_token,
                    RecordStatus.SYNCED.value,
                    source_transaction.id if source_transaction else None,
                    mapping.source_account_id if mapping else None,
                    mapping.destination_account_id if mapping else None,
                    destination_id,
                    source_transaction.amount if source_transaction else None,
                    destination_amount,
                    transaction_date,
                    source_transaction.display_description if source_transaction else None,
                    now,
                    now,
                    synced_at,
                ),
            )

        logger.debug("Marked %s synced (destination id %s)", import_token, destination_id)

    def record_failure(
        self,
        import_token: str,
        error: SyncError,
        source_transaction: SourceTransaction | None = None,
        mapping: AccountMapping | None = None,
        destination_id: str | None = None,
    ) -> None:
        """
        Record a failed submission.

        Never overwrites a SYNCED row.
        """
        now = _now_iso()

        with self._write_lock, self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO synced_transactions
                (import_token, status, source_transaction_id, source_account_id,
                 destination_account_id, destination_transaction_id, source_amount,
                 description, error_type, error_message, attempts, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(import_token) DO UPDATE SET
                    status = excluded.status,
                    destination_transaction_id = COALESCE(
                        excluded.destination_transaction_id,
                        synced_transactions.destination_transaction_id
                    ),
                    error_type = excluded.error_type,
                    error_message = excluded.error_message,
                    attempts = synced_transactions.attempts + 1,
                    updated_at = excluded.updated_at
                WHERE synced_transactions.status != 'SYNCED'
            """,
                (
                    import_token,
                    RecordStatus.FAILED.value,
                    source_transaction.id if source_transaction else error.transaction_id,
                    mapping.source_account_id if mapping else error.account_id,
                    mapping.destination_account_id if mapping else None,
                    destination_id,
                    source_transaction.amount if source_transaction else None,
                    source_transaction.display_description if source_transaction else None,
                    error.type.value,
                    error.message,
                    now,
                    now,
                ),
            )

        logger.debug("Recorded failure for %s: %s", import_token, error.message)

    def get_failed_records(
        self, limit: int | None = None, account_id: str | None = None
    ) -> list[SyncRecord]:
        """Failed tokens, most recently updated first."""
        query = "SELECT * FROM synced_transactions WHERE status = ?"
        params: list[Any] = [RecordStatus.FAILED.value]
        if account_id:
            query += " AND source_account_id = ?"
            params.append(account_id)
        query += " ORDER BY updated_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [SyncRecord.from_row(row) for row in rows]

    def delete_record(self, import_token: str) -> bool:
        """Delete a failed record so the token is retried. Synced rows are kept."""
        with self._write_lock, self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM synced_transactions WHERE import_token = ? AND status = ?",
                (import_token, RecordStatus.FAILED.value),
            )
            return cursor.rowcount > 0

    def cleanup_failed(self) -> int:
        """Delete every failed record. Returns the number removed."""
        with self._write_lock, self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM synced_transactions WHERE status = ?",
                (RecordStatus.FAILED.value,),
            )
            removed = cursor.rowcount
        logger.info("Removed %d failed record(s)", removed)
        return removed

    def get_health(self) -> StoreHealth:
        """Counts and integrity check for the status command."""
        with self._transaction() as conn:
            counts = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN status = 'SYNCED' THEN 1 ELSE 0 END) AS synced,
                    SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END) AS failed,
                    MIN(created_at) AS oldest
                FROM synced_transactions
            """
            ).fetchone()
            integrity = conn.execute("PRAGMA integrity_check").fetchone()
            schema_version = MigrationRunner(conn).current_version()

        return StoreHealth(
            total_records=counts["total"] or 0,
            synced_records=counts["synced"] or 0,
            failed_transactions=counts["failed"] or 0,
            oldest_record=_parse_iso(counts["oldest"]),
            integrity_ok=bool(integrity) and integrity[0] == "ok",
            schema_version=schema_version,
        )

    # Sync log methods

    def record_sync_run(self, result: SyncResult) -> int:
        """Append a run to the sync log. Returns the log entry id."""
        summary = result.summary
        with self._write_lock, self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_log
                (run_id, started_at, finished_at, range_start, range_end, dry_run,
                 accounts, processed, synced, failed, duplicate, skipped,
                 error_count, is_success, duration_seconds)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    result.run_id,
                    _to_iso(result.started_at),
                    _to_iso(result.finished_at),
                    result.date_range.start.isoformat(),
                    result.date_range.end.isoformat(),
                    1 if result.dry_run else 0,
                    summary.total_accounts,
                    summary.total_transactions,
                    summary.synced,
                    summary.failed,
                    summary.duplicate,
                    summary.skipped,
                    len(result.errors),
                    1 if result.is_success else 0,
                    summary.duration_seconds,
                ),
            )
            return cursor.lastrowid or 0

    def get_sync_log(self, limit: int = 20) -> list[SyncLogEntry]:
        """Most recent runs first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
            return [SyncLogEntry.from_row(row) for row in rows]

    def get_last_sync_run(self) -> SyncLogEntry | None:
        entries = self.get_sync_log(limit=1)
        return entries[0] if entries else None

    # Merchant rule methods

    def load_rules(self, profile_id: str) -> list[MerchantRule]:
        """Rules for a profile in registration order."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM merchant_rules WHERE profile_id = ? ORDER BY id ASC",
                (profile_id,),
            ).fetchall()
            return [
                MerchantRule(
                    id=row["id"],
                    pattern=row["pattern"],
                    payee_name=row["payee_name"],
                    category_id=row["category_id"],
                    category_name=row["category_name"],
                    priority=row["priority"],
                    confidence=row["confidence"],
                    is_regex=bool(row["is_regex"]),
                )
                for row in rows
            ]

    def save_rule(self, profile_id: str, rule: MerchantRule) -> int:
        """
        Insert or update a rule, keyed by (profile, pattern).

        Updating keeps the rule's registration order.
        """
        now = _now_iso()
        with self._write_lock, self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO merchant_rules
                (profile_id, pattern, payee_name, category_id, category_name,
                 priority, confidence, is_regex, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(profile_id, pattern) DO UPDATE SET
                    payee_name = excluded.payee_name,
                    category_id = excluded.category_id,
                    category_name = excluded.category_name,
                    priority = excluded.priority,
                    confidence = excluded.confidence,
                    is_regex = excluded.is_regex,
                    updated_at = excluded.updated_at
            """,
                (
                    profile_id,
                    rule.pattern,
                    rule.payee_name,
                    rule.category_id,
                    rule.category_name,
                    rule.priority,
                    rule.confidence,
                    1 if rule.is_regex else 0,
                    now,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT id FROM merchant_rules WHERE profile_id = ? AND pattern = ?",
                (profile_id, rule.pattern),
            ).fetchone()
            return row["id"]

    def record_rule_usage(self, rule_counts: dict[int, int], timestamp: datetime | None = None) -> None:
        """Add synced-match counts per rule id."""
        if not rule_counts:
            return
        matched_at = _to_iso(timestamp)
        with self._write_lock, self._transaction() as conn:
            conn.executemany(
                """
                UPDATE merchant_rules
                SET match_count = match_count + ?, last_matched_at = ?
                WHERE id = ?
            """,
                [(count, matched_at, rule_id) for rule_id, count in rule_counts.items()],
            )
        logger.debug("Recorded usage for %d rule(s)", len(rule_counts))

    def get_rule_stats(self, profile_id: str) -> list[RuleStats]:
        """Rules for a profile, most used first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT pattern, category_name, match_count, last_matched_at
                FROM merchant_rules
                WHERE profile_id = ?
                ORDER BY match_count DESC, id ASC
            """,
                (profile_id,),
            ).fetchall()
            return [
                RuleStats(
                    pattern=row["pattern"],
                    category_name=row["category_name"],
                    match_count=row["match_count"],
                    last_matched_at=_parse_iso(row["last_matched_at"]),
                )
                for row in rows
            ]

    def delete_rule(self, profile_id: str, pattern: str) -> bool:
        """Delete a rule by pattern. Returns True if deleted."""
        with self._write_lock, self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM merchant_rules WHERE profile_id = ? AND pattern = ?",
                (profile_id, pattern),
            )
            return cursor.rowcount > 0
