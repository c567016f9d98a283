"""
Review queue.

Turns sync outcomes and stored failures into ReviewItems a person can act
on: failed transactions, aborted accounts, run-level errors and balance
mismatches between an Up account and its YNAB account.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..schemas.normalizer import to_destination_amount
from ..schemas.sync_result import SyncErrorType, SyncTransactionStatus
from .error_mapping import classify_exception

if TYPE_CHECKING:
    from ..schemas.sync_result import SyncError, SyncResult
    from ..schemas.transactions import AccountMapping
    from ..state_store import StateStore, SyncRecord
    from ..up_client import UpClient
    from ..ynab_client import YnabClient

logger = logging.getLogger(__name__)


class ReviewItemType(str, Enum):
    """What needs attention."""

    FAILED_TRANSACTION = "failed_transaction"
    BALANCE_MISMATCH = "balance_mismatch"
    DUPLICATE_TRANSACTION = "duplicate_transaction"
    CONFIGURATION_ISSUE = "configuration_issue"
    SYNC_ERROR = "sync_error"
    ACCOUNT_ISSUE = "account_issue"


class ReviewSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER = {
    ReviewSeverity.CRITICAL: 0,
    ReviewSeverity.HIGH: 1,
    ReviewSeverity.MEDIUM: 2,
    ReviewSeverity.LOW: 3,
}


@dataclass(frozen=True)
class ReviewItem:
    """One actionable item."""

    type: ReviewItemType
    title: str
    description: str
    severity: ReviewSeverity
    action_required: bool = True
    account_id: str | None = None
    transaction_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "action_required": self.action_required,
            "account_id": self.account_id,
            "transaction_id": self.transaction_id,
            "timestamp": self.timestamp.isoformat(),
        }


def _severity_for(error: SyncError) -> ReviewSeverity:
    if error.is_critical:
        return ReviewSeverity.CRITICAL
    if error.type in (SyncErrorType.DATA_VALIDATION, SyncErrorType.ACCOUNT_MAPPING):
        return ReviewSeverity.HIGH
    return ReviewSeverity.MEDIUM


def _item_type_for(error: SyncError) -> ReviewItemType:
    if error.type in (SyncErrorType.CONFIGURATION_ERROR, SyncErrorType.AUTHENTICATION):
        return ReviewItemType.CONFIGURATION_ISSUE
    if error.type == SyncErrorType.ACCOUNT_MAPPING:
        return ReviewItemType.ACCOUNT_ISSUE
    return ReviewItemType.SYNC_ERROR


def sort_items(items: list[ReviewItem]) -> list[ReviewItem]:
    """Most severe first, then oldest first."""
    return sorted(items, key=lambda i: (SEVERITY_ORDER[i.severity], i.timestamp))


def review_items_from_result(result: SyncResult, include_duplicates: bool = False) -> list[ReviewItem]:
    """
    Build review items from a finished run.

    Args:
        result: The run to inspect
        include_duplicates: Also list transactions skipped as duplicates
            (informational, no action required)
    """
    items: list[ReviewItem] = []
    transaction_error_ids: set[str] = set()

    for account in result.account_results:
        mapping = account.mapping

        if account.is_aborted:
            reason = "; ".join(e.message for e in account.errors if e.is_critical) or "unknown"
            items.append(
                ReviewItem(
                    type=ReviewItemType.ACCOUNT_ISSUE,
                    title=f"Sync aborted for {mapping.display_name}",
                    description=reason,
                    severity=ReviewSeverity.CRITICAL,
                    account_id=mapping.source_account_id,
                )
            )

        for tx_result in account.transactions:
            tx = tx_result.source_transaction
            if tx_result.status == SyncTransactionStatus.FAILED and tx_result.error:
                transaction_error_ids.add(tx_result.error.id)
                items.append(
                    ReviewItem(
                        type=ReviewItemType.FAILED_TRANSACTION,
                        title=f"Failed: {tx.display_description}",
                        description=(
                            f"{tx_result.error.type.value}: {tx_result.error.message} "
                            f"(amount {tx.amount} cents, created {tx.created_at.date()})"
                        ),
                        severity=_severity_for(tx_result.error),
                        account_id=mapping.source_account_id,
                        transaction_id=tx.id,
                    )
                )
            elif include_duplicates and tx_result.status == SyncTransactionStatus.DUPLICATE:
                items.append(
                    ReviewItem(
                        type=ReviewItemType.DUPLICATE_TRANSACTION,
                        title=f"Duplicate: {tx.display_description}",
                        description=tx_result.detail or "already synced",
                        severity=ReviewSeverity.LOW,
                        action_required=False,
                        account_id=mapping.source_account_id,
                        transaction_id=tx.id,
                    )
                )

    # Errors not tied to a single transaction (rule loading, fetch)
    for error in result.errors:
        if error.id in transaction_error_ids:
            continue
        if error.account_id and error.is_critical and error.transaction_id is None:
            # Already reported as an aborted account
            continue
        items.append(
            ReviewItem(
                type=_item_type_for(error),
                title=f"{error.type.value.replace('_', ' ').capitalize()} error",
                description=error.message,
                severity=_severity_for(error),
                account_id=error.account_id,
                transaction_id=error.transaction_id,
            )
        )

    return sort_items(items)


def review_items_from_records(records: list[SyncRecord]) -> list[ReviewItem]:
    """Build review items from failed rows in the state store."""
    items = []
    for record in records:
        error_type = record.error_type or SyncErrorType.UNKNOWN.value
        try:
            critical = SyncErrorType(error_type).is_critical
        except ValueError:
            critical = False
        items.append(
            ReviewItem(
                type=ReviewItemType.FAILED_TRANSACTION,
                title=f"Failed: {record.description or record.import_token}",
                description=(
                    f"{error_type}: {record.error_message or 'no detail'} "
                    f"({record.attempts} attempt(s), last {record.updated_at})"
                ),
                severity=ReviewSeverity.CRITICAL if critical else ReviewSeverity.HIGH,
                account_id=record.source_account_id,
                transaction_id=record.source_transaction_id,
            )
        )
    return sort_items(items)


def check_balance(
    mapping: AccountMapping,
    source_balance_cents: int,
    destination_balance_milliunits: int,
) -> ReviewItem | None:
    """Compare an Up balance to its YNAB account balance. None when they agree."""
    expected = to_destination_amount(source_balance_cents)
    if expected == destination_balance_milliunits:
        return None

    difference = destination_balance_milliunits - expected
    return ReviewItem(
        type=ReviewItemType.BALANCE_MISMATCH,
        title=f"Balance mismatch for {mapping.display_name}",
        description=(
            f"Up balance {source_balance_cents / 100:.2f}, "
            f"YNAB balance {destination_balance_milliunits / 1000:.2f} "
            f"(difference {difference / 1000:+.2f})"
        ),
        severity=ReviewSeverity.MEDIUM,
        account_id=mapping.source_account_id,
    )


class ReviewQueue:
    """Collects review items from the store and from live balance checks."""

    def __init__(self, store: StateStore):
        """Initialize with state store."""
        self.store = store

    def failed_transactions(self, limit: int | None = None) -> list[ReviewItem]:
        return review_items_from_records(self.store.get_failed_records(limit=limit))

    def check_balances(
        self,
        mappings: list[AccountMapping],
        up_client: UpClient,
        ynab_client: YnabClient,
    ) -> list[ReviewItem]:
        """One item per enabled mapping whose balances disagree or cannot be read."""
        items: list[ReviewItem] = []
        for mapping in mappings:
            if not mapping.enabled:
                continue
            try:
                source_account = up_client.get_account(mapping.source_account_id)
                destination_account = ynab_client.get_account(mapping.destination_account_id)
            except Exception as e:
                error = classify_exception(e, account_id=mapping.source_account_id)
                logger.warning("Balance check for %s failed: %s", mapping.display_name, e)
                items.append(
                    ReviewItem(
                        type=ReviewItemType.ACCOUNT_ISSUE,
                        title=f"Cannot read balances for {mapping.display_name}",
                        description=f"{error.type.value}: {error.message}",
                        severity=_severity_for(error),
                        account_id=mapping.source_account_id,
                    )
                )
                continue

            item = check_balance(mapping, source_account.balance, destination_account.balance)
            if item is not None:
                items.append(item)
        return sort_items(items)

    def clear_failed(self) -> int:
        """Drop failed records so the next run retries them."""
        return self.store.cleanup_failed()
