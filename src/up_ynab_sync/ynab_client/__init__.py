"""
YNAB API Client.

Provides:
- Create transactions (POST /budgets/{budget_id}/transactions)
- Read transactions back by id
- List accounts and categories

Duplicate import ids surface as YnabDuplicateImportError so callers can
treat them as already-synced rather than failed.
"""

from .client import (
    YnabAccount,
    YnabAPIError,
    YnabAuthenticationError,
    YnabCategory,
    YnabClient,
    YnabConnectionError,
    YnabDuplicateImportError,
    YnabError,
    YnabRateLimitError,
)

__all__ = [
    "YnabClient",
    "YnabAccount",
    "YnabCategory",
    "YnabError",
    "YnabAPIError",
    "YnabAuthenticationError",
    "YnabRateLimitError",
    "YnabConnectionError",
    "YnabDuplicateImportError",
]
