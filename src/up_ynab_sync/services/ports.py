"""Collaborator interfaces used by the sync engine.

UpClient, YnabClient and StateStore satisfy these structurally; tests swap
in fakes.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from up_ynab_sync.schemas.sync_result import SyncError, SyncResult
    from up_ynab_sync.state_store.sqlite_store import SyncRecord
    from up_ynab_sync.schemas.transactions import (
        AccountMapping,
        DestinationTransaction,
        DestinationTransactionRequest,
        MerchantRule,
        SourceTransaction,
    )


class SourceLedger(Protocol):
    def list_transactions(
        self, account_id: str, since: datetime, until: datetime | None = None
    ) -> list[SourceTransaction]: ...


class DestinationLedger(Protocol):
    def create_transaction(
        self, request: DestinationTransactionRequest
    ) -> DestinationTransaction: ...

    def get_transaction(self, transaction_id: str) -> DestinationTransaction: ...


class SyncStateStore(Protocol):
    def is_synced(self, import_token: str) -> bool: ...

    def get_record(self, import_token: str) -> SyncRecord | None: ...

    def mark_synced(
        self,
        import_token: str,
        destination_id: str | None,
        timestamp: datetime | None = None,
        source_transaction: SourceTransaction | None = None,
        mapping: AccountMapping | None = None,
        destination_amount: int | None = None,
        transaction_date: str | None = None,
    ) -> None: ...

    def record_failure(
        self,
        import_token: str,
        error: SyncError,
        source_transaction: SourceTransaction | None = None,
        mapping: AccountMapping | None = None,
        destination_id: str | None = None,
    ) -> None: ...

    def token_lock(self, import_token: str) -> AbstractContextManager[None]: ...

    def record_sync_run(self, result: SyncResult) -> int: ...


class MerchantRuleProvider(Protocol):
    def load_rules(self, profile_id: str) -> list[MerchantRule]: ...

    def record_rule_usage(self, rule_counts: dict[int, int]) -> None: ...


__all__ = [
    "DestinationLedger",
    "MerchantRuleProvider",
    "SourceLedger",
    "SyncStateStore",
]
