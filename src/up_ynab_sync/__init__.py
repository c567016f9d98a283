"""
Up Banking → YNAB transaction sync.

A batch, idempotent reconciliation that pulls settled transactions from
Up Banking accounts and imports them into mapped YNAB accounts, with
import-id deduplication, a durable SQLite sync state and optional
merchant-rule categorization.
"""

__version__ = "0.1.0"
