"""
Sync outcome models.

Every run produces one SyncResult holding one AccountSyncResult per mapping,
which in turn holds one SyncedTransactionResult per fetched transaction.
All of them are write-once and serialize to plain dicts for the audit log.

Error taxonomy:
- Critical errors stop the affected account and make the run unsuccessful:
  authentication, amount_conversion, database_error, configuration_error.
- Everything else is recorded and the account keeps going.
- Transient errors (network, rate_limited) are retried before being recorded.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from up_ynab_sync.matching.engine import CategorizationMatch
    from up_ynab_sync.schemas.transactions import (
        AccountMapping,
        DateRange,
        DestinationTransaction,
        DestinationTransactionRequest,
        SourceTransaction,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class SyncTransactionStatus(str, Enum):
    """Outcome of one source transaction."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    WOULD_SYNC = "would_sync"  # dry run only


class SyncErrorType(str, Enum):
    """Error taxonomy for sync failures."""

    AUTHENTICATION = "authentication"
    NETWORK = "network"
    API_ERROR = "api_error"
    DATA_VALIDATION = "data_validation"
    AMOUNT_CONVERSION = "amount_conversion"
    DUPLICATE_TRANSACTION = "duplicate_transaction"
    ACCOUNT_MAPPING = "account_mapping"
    DATABASE_ERROR = "database_error"
    CONFIGURATION_ERROR = "configuration_error"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"

    @property
    def is_critical(self) -> bool:
        return self in CRITICAL_ERROR_TYPES

    @property
    def is_transient(self) -> bool:
        return self in TRANSIENT_ERROR_TYPES


CRITICAL_ERROR_TYPES = frozenset(
    {
        SyncErrorType.AUTHENTICATION,
        SyncErrorType.AMOUNT_CONVERSION,
        SyncErrorType.DATABASE_ERROR,
        SyncErrorType.CONFIGURATION_ERROR,
    }
)

TRANSIENT_ERROR_TYPES = frozenset({SyncErrorType.NETWORK, SyncErrorType.RATE_LIMITED})


@dataclass(frozen=True)
class SyncError:
    """A classified failure with the account/transaction it belongs to."""

    type: SyncErrorType
    message: str
    is_critical: bool
    account_id: str | None = None
    transaction_id: str | None = None
    cause: BaseException | None = field(default=None, compare=False, repr=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        error_type: SyncErrorType,
        message: str,
        account_id: str | None = None,
        transaction_id: str | None = None,
        cause: BaseException | None = None,
        is_critical: bool | None = None,
    ) -> SyncError:
        """Build an error, taking criticality from the taxonomy unless overridden."""
        return cls(
            type=error_type,
            message=message,
            is_critical=error_type.is_critical if is_critical is None else is_critical,
            account_id=account_id,
            transaction_id=transaction_id,
            cause=cause,
        )

    @property
    def is_transient(self) -> bool:
        return self.type.is_transient

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "message": self.message,
            "is_critical": self.is_critical,
            "account_id": self.account_id,
            "transaction_id": self.transaction_id,
            "cause": repr(self.cause) if self.cause is not None else None,
            "timestamp": _iso(self.timestamp),
        }


@dataclass(frozen=True)
class SyncedTransactionResult:
    """Decision record for one source transaction."""

    source_transaction: SourceTransaction
    import_token: str
    status: SyncTransactionStatus
    request: DestinationTransactionRequest | None = None
    destination_transaction: DestinationTransaction | None = None
    error: SyncError | None = None
    amount_validated: bool = False
    attempts: int = 0
    match: CategorizationMatch | None = None
    detail: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_success(self) -> bool:
        return self.status == SyncTransactionStatus.SYNCED and self.amount_validated

    def to_dict(self) -> dict[str, Any]:
        return {
            "import_token": self.import_token,
            "status": self.status.value,
            "detail": self.detail,
            "amount_validated": self.amount_validated,
            "attempts": self.attempts,
            "source_transaction": self.source_transaction.to_dict(),
            "request": self.request.to_dict() if self.request else None,
            "destination_transaction": (
                self.destination_transaction.to_dict() if self.destination_transaction else None
            ),
            "match": self.match.to_dict() if self.match else None,
            "error": self.error.to_dict() if self.error else None,
            "timestamp": _iso(self.timestamp),
        }


class AccountSyncState(str, Enum):
    """Lifecycle of one account within a run."""

    FETCHING = "FETCHING"
    RECONCILING = "RECONCILING"
    SUBMITTING = "SUBMITTING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class AccountSyncResult:
    """Outcome of syncing one account mapping."""

    mapping: AccountMapping
    state: AccountSyncState
    transactions: tuple[SyncedTransactionResult, ...] = ()
    errors: tuple[SyncError, ...] = ()
    fetched_count: int = 0
    pending_excluded: int = 0
    duration_seconds: float = 0.0

    def _count(self, status: SyncTransactionStatus) -> int:
        return sum(1 for t in self.transactions if t.status == status)

    @property
    def processed_count(self) -> int:
        return len(self.transactions)

    @property
    def synced_count(self) -> int:
        return self._count(SyncTransactionStatus.SYNCED)

    @property
    def failed_count(self) -> int:
        return self._count(SyncTransactionStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(SyncTransactionStatus.SKIPPED)

    @property
    def duplicate_count(self) -> int:
        return self._count(SyncTransactionStatus.DUPLICATE)

    @property
    def would_sync_count(self) -> int:
        return self._count(SyncTransactionStatus.WOULD_SYNC)

    @property
    def amount_synced(self) -> int:
        """Sum of synced amounts in source minor units (cents)."""
        return sum(
            t.source_transaction.amount
            for t in self.transactions
            if t.status == SyncTransactionStatus.SYNCED
        )

    @property
    def is_success(self) -> bool:
        return not any(e.is_critical for e in self.errors)

    @property
    def is_aborted(self) -> bool:
        return self.state == AccountSyncState.ABORTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "mapping": self.mapping.to_dict(),
            "state": self.state.value,
            "fetched_count": self.fetched_count,
            "pending_excluded": self.pending_excluded,
            "processed": self.processed_count,
            "synced": self.synced_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "duplicate": self.duplicate_count,
            "would_sync": self.would_sync_count,
            "amount_synced": self.amount_synced,
            "duration_seconds": round(self.duration_seconds, 3),
            "is_success": self.is_success,
            "transactions": [t.to_dict() for t in self.transactions],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class SyncSummary:
    """Aggregate counts for a run."""

    total_accounts: int = 0
    total_transactions: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    duplicate: int = 0
    would_sync: int = 0
    duration_seconds: float = 0.0

    @property
    def success_rate(self) -> float:
        """Synced / total, 0.0 for an empty run."""
        if self.total_transactions == 0:
            return 0.0
        return self.synced / self.total_transactions

    @classmethod
    def from_account_results(
        cls, results: list[AccountSyncResult] | tuple[AccountSyncResult, ...], duration_seconds: float
    ) -> SyncSummary:
        return cls(
            total_accounts=len(results),
            total_transactions=sum(r.processed_count for r in results),
            synced=sum(r.synced_count for r in results),
            skipped=sum(r.skipped_count for r in results),
            failed=sum(r.failed_count for r in results),
            duplicate=sum(r.duplicate_count for r in results),
            would_sync=sum(r.would_sync_count for r in results),
            duration_seconds=duration_seconds,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_accounts": self.total_accounts,
            "total_transactions": self.total_transactions,
            "synced": self.synced,
            "skipped": self.skipped,
            "failed": self.failed,
            "duplicate": self.duplicate,
            "would_sync": self.would_sync,
            "success_rate": round(self.success_rate, 4),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one full sync run."""

    run_id: str
    date_range: DateRange
    dry_run: bool
    account_results: tuple[AccountSyncResult, ...]
    summary: SyncSummary
    errors: tuple[SyncError, ...]
    started_at: datetime
    finished_at: datetime
    cancelled: bool = False

    @property
    def is_success(self) -> bool:
        """True iff no critical error occurred anywhere in the run."""
        return not any(e.is_critical for e in self.errors)

    @property
    def has_warnings(self) -> bool:
        return any(not e.is_critical for e in self.errors)

    @property
    def critical_errors(self) -> list[SyncError]:
        return [e for e in self.errors if e.is_critical]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "date_range": self.date_range.to_dict(),
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "is_success": self.is_success,
            "has_warnings": self.has_warnings,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "summary": self.summary.to_dict(),
            "accounts": [r.to_dict() for r in self.account_results],
            "errors": [e.to_dict() for e in self.errors],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)
