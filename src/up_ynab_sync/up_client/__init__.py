"""
Up Banking API Client.

Provides:
- List accounts (GET /accounts)
- List transactions per account (GET /accounts/{id}/transactions)
- Connection check (GET /util/ping)

Errors are raised loudly; the sync engine decides whether to retry.
"""

from .client import (
    UpAccount,
    UpAPIError,
    UpAuthenticationError,
    UpClient,
    UpConnectionError,
    UpError,
    UpPaginationError,
    UpRateLimitError,
    parse_transaction,
)

__all__ = [
    "UpClient",
    "UpAccount",
    "UpError",
    "UpAPIError",
    "UpAuthenticationError",
    "UpRateLimitError",
    "UpConnectionError",
    "UpPaginationError",
    "parse_transaction",
]
