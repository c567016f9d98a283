"""
SSOT schemas for the sync.

Amount/date normalization, import tokens, transaction models and sync
results. No other module defines its own variant of these.
"""

from .import_token import IMPORT_TOKEN_MAX_LENGTH, resolve_import_token
from .normalizer import (
    AMOUNT_SCALE,
    UNKNOWN_PAYEE,
    AmountConversionError,
    build_memo,
    resolve_payee_name,
    to_destination_amount,
    to_destination_date,
    to_source_amount,
    validate_amount_conversion,
)
from .sync_result import (
    AccountSyncResult,
    AccountSyncState,
    SyncedTransactionResult,
    SyncError,
    SyncErrorType,
    SyncResult,
    SyncSummary,
    SyncTransactionStatus,
)
from .transactions import (
    AccountMapping,
    AccountType,
    ClearedStatus,
    DateRange,
    DestinationTransaction,
    DestinationTransactionRequest,
    MerchantRule,
    SourceTransaction,
    SourceTransactionStatus,
    SyncContext,
    SyncOptions,
)

__all__ = [
    # Import tokens
    "IMPORT_TOKEN_MAX_LENGTH",
    "resolve_import_token",
    # Normalizer
    "AMOUNT_SCALE",
    "UNKNOWN_PAYEE",
    "AmountConversionError",
    "build_memo",
    "resolve_payee_name",
    "to_destination_amount",
    "to_destination_date",
    "to_source_amount",
    "validate_amount_conversion",
    # Results
    "AccountSyncResult",
    "AccountSyncState",
    "SyncedTransactionResult",
    "SyncError",
    "SyncErrorType",
    "SyncResult",
    "SyncSummary",
    "SyncTransactionStatus",
    # Transactions
    "AccountMapping",
    "AccountType",
    "ClearedStatus",
    "DateRange",
    "DestinationTransaction",
    "DestinationTransactionRequest",
    "MerchantRule",
    "SourceTransaction",
    "SourceTransactionStatus",
    "SyncContext",
    "SyncOptions",
]
