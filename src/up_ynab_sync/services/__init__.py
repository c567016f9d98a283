"""Services for the Up → YNAB sync."""

from .account_sync import AccountSyncRunner
from .review import (
    ReviewItem,
    ReviewItemType,
    ReviewQueue,
    ReviewSeverity,
    review_items_from_result,
)
from .sync_engine import SyncEngine

__all__ = [
    "AccountSyncRunner",
    "ReviewItem",
    "ReviewItemType",
    "ReviewQueue",
    "ReviewSeverity",
    "SyncEngine",
    "review_items_from_result",
]
