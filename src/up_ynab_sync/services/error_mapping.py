"""Exception classification.

The account runner is the only place client and store exceptions become
SyncErrors; this module decides which SyncErrorType each one is.
"""

from __future__ import annotations

import sqlite3

import requests

from up_ynab_sync.config import ConfigValidationError
from up_ynab_sync.schemas.normalizer import AmountConversionError
from up_ynab_sync.schemas.sync_result import SyncError, SyncErrorType
from up_ynab_sync.up_client import (
    UpAPIError,
    UpAuthenticationError,
    UpConnectionError,
    UpPaginationError,
    UpRateLimitError,
)
from up_ynab_sync.ynab_client import (
    YnabAPIError,
    YnabAuthenticationError,
    YnabConnectionError,
    YnabDuplicateImportError,
    YnabRateLimitError,
)


def _classify_status(status_code: int) -> SyncErrorType:
    if status_code == 401:
        return SyncErrorType.AUTHENTICATION
    if status_code == 429:
        return SyncErrorType.RATE_LIMITED
    if status_code >= 500:
        return SyncErrorType.NETWORK
    if status_code in (400, 422):
        return SyncErrorType.DATA_VALIDATION
    if status_code == 404:
        return SyncErrorType.ACCOUNT_MAPPING
    return SyncErrorType.API_ERROR


def classify_error_type(exc: BaseException) -> SyncErrorType:
    """Map an exception to its SyncErrorType."""
    if isinstance(exc, (UpAuthenticationError, YnabAuthenticationError)):
        return SyncErrorType.AUTHENTICATION
    if isinstance(exc, (UpRateLimitError, YnabRateLimitError)):
        return SyncErrorType.RATE_LIMITED
    if isinstance(
        exc,
        (
            UpConnectionError,
            YnabConnectionError,
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
        ),
    ):
        return SyncErrorType.NETWORK
    if isinstance(exc, YnabDuplicateImportError):
        return SyncErrorType.DUPLICATE_TRANSACTION
    if isinstance(exc, UpPaginationError):
        return SyncErrorType.API_ERROR
    if isinstance(exc, (UpAPIError, YnabAPIError)):
        return _classify_status(exc.status_code)
    if isinstance(exc, AmountConversionError):
        return SyncErrorType.AMOUNT_CONVERSION
    if isinstance(exc, sqlite3.Error):
        return SyncErrorType.DATABASE_ERROR
    if isinstance(exc, ConfigValidationError):
        return SyncErrorType.CONFIGURATION_ERROR
    if isinstance(exc, ValueError):
        return SyncErrorType.DATA_VALIDATION
    return SyncErrorType.UNKNOWN


def classify_exception(
    exc: BaseException,
    account_id: str | None = None,
    transaction_id: str | None = None,
    is_critical: bool | None = None,
) -> SyncError:
    """Wrap an exception as a SyncError with account/transaction context."""
    return SyncError.create(
        classify_error_type(exc),
        str(exc) or exc.__class__.__name__,
        account_id=account_id,
        transaction_id=transaction_id,
        cause=exc,
        is_critical=is_critical,
    )
