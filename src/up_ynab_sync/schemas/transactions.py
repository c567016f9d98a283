"""
Transaction and account models shared by the clients and the sync engine.

Source side is Up Banking (cents, JSON:API), destination side is YNAB
(milliunits). Everything here is immutable once built.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from up_ynab_sync.config import CategorizationSettings, SyncSettings

logger = logging.getLogger(__name__)

UNKNOWN_DESCRIPTION = "Unknown transaction"


class AccountType(str, Enum):
    """Up Banking account type."""

    TRANSACTIONAL = "TRANSACTIONAL"
    SAVER = "SAVER"

    @classmethod
    def parse(cls, value: str | AccountType) -> AccountType:
        """Parse case-insensitively ("saver", "SAVER")."""
        if isinstance(value, AccountType):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown account type: {value!r}") from None


class SourceTransactionStatus(str, Enum):
    """Up Banking transaction status."""

    HELD = "HELD"
    SETTLED = "SETTLED"


@dataclass(frozen=True)
class AccountMapping:
    """Pairing of one Up account with one YNAB account."""

    source_account_id: str
    source_account_name: str
    source_account_type: AccountType
    destination_account_id: str
    destination_account_name: str
    enabled: bool = True
    last_sync_date: date | None = None

    @property
    def display_name(self) -> str:
        return f"{self.source_account_name} → {self.destination_account_name}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountMapping:
        """Build from a config dict."""
        last_sync = data.get("last_sync_date")
        if isinstance(last_sync, str):
            last_sync = date.fromisoformat(last_sync)

        return cls(
            source_account_id=str(data["source_account_id"]),
            source_account_name=str(data.get("source_account_name", data["source_account_id"])),
            source_account_type=AccountType.parse(
                data.get("source_account_type", AccountType.TRANSACTIONAL)
            ),
            destination_account_id=str(data["destination_account_id"]),
            destination_account_name=str(
                data.get("destination_account_name", data["destination_account_id"])
            ),
            enabled=bool(data.get("enabled", True)),
            last_sync_date=last_sync,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_account_id": self.source_account_id,
            "source_account_name": self.source_account_name,
            "source_account_type": self.source_account_type.value,
            "destination_account_id": self.destination_account_id,
            "destination_account_name": self.destination_account_name,
            "enabled": self.enabled,
            "last_sync_date": self.last_sync_date.isoformat() if self.last_sync_date else None,
        }


@dataclass(frozen=True)
class SourceTransaction:
    """A transaction as reported by Up Banking.

    `amount` is signed cents (`valueInBaseUnits`). `settled_at` is None while
    the transaction is HELD; held transactions are never synced.
    """

    id: str
    account_id: str
    amount: int
    description: str
    created_at: datetime
    status: SourceTransactionStatus = SourceTransactionStatus.SETTLED
    settled_at: datetime | None = None
    raw_text: str | None = None
    message: str | None = None
    currency_code: str = "AUD"

    @property
    def is_settled(self) -> bool:
        return self.status == SourceTransactionStatus.SETTLED and self.settled_at is not None

    @property
    def display_description(self) -> str:
        """Description, else raw bank text, else a placeholder."""
        return self.description or self.raw_text or UNKNOWN_DESCRIPTION

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "amount": self.amount,
            "currency_code": self.currency_code,
            "description": self.description,
            "raw_text": self.raw_text,
            "message": self.message,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }


@dataclass(frozen=True)
class MerchantRule:
    """User-defined rule rewriting payee and category for matching descriptions.

    Plain patterns match as case-insensitive substrings of the description.
    Regex patterns are searched case-insensitively.
    """

    pattern: str
    payee_name: str
    category_id: str | None = None
    category_name: str | None = None
    priority: int = 0
    confidence: float = 1.0
    is_regex: bool = False
    id: int | None = None

    def matches(self, description: str) -> bool:
        """Evaluate this rule's predicate against a description."""
        if not description or not self.pattern:
            return False

        if self.is_regex:
            try:
                return re.search(self.pattern, description, re.IGNORECASE) is not None
            except re.error as e:
                logger.warning("Invalid regex in merchant rule %r: %s", self.pattern, e)
                return False

        haystack = " ".join(description.upper().split())
        needle = " ".join(self.pattern.upper().split())
        return needle in haystack

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "payee_name": self.payee_name,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "priority": self.priority,
            "confidence": self.confidence,
            "is_regex": self.is_regex,
        }


class ClearedStatus(str, Enum):
    """YNAB cleared state."""

    CLEARED = "cleared"
    UNCLEARED = "uncleared"
    RECONCILED = "reconciled"


@dataclass(frozen=True)
class DestinationTransactionRequest:
    """Payload for creating a YNAB transaction."""

    account_id: str
    date: str
    amount: int
    payee_name: str
    import_id: str
    memo: str | None = None
    category_id: str | None = None
    cleared: ClearedStatus = ClearedStatus.CLEARED
    approved: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to the YNAB SaveTransaction JSON shape."""
        payload: dict[str, Any] = {
            "account_id": self.account_id,
            "date": self.date,
            "amount": self.amount,
            "payee_name": self.payee_name,
            "import_id": self.import_id,
            "cleared": self.cleared.value,
            "approved": self.approved,
        }
        if self.memo:
            payload["memo"] = self.memo
        if self.category_id:
            payload["category_id"] = self.category_id
        return payload


@dataclass(frozen=True)
class DestinationTransaction:
    """A transaction as reported by YNAB."""

    id: str
    account_id: str
    date: str
    amount: int | None
    payee_name: str | None = None
    memo: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    import_id: str | None = None
    cleared: str | None = None
    deleted: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> DestinationTransaction:
        """Build from a YNAB TransactionDetail object."""
        amount = data.get("amount")
        return cls(
            id=str(data["id"]),
            account_id=str(data.get("account_id", "")),
            date=str(data.get("date", "")),
            amount=int(amount) if amount is not None else None,
            payee_name=data.get("payee_name"),
            memo=data.get("memo"),
            category_id=data.get("category_id"),
            category_name=data.get("category_name"),
            import_id=data.get("import_id"),
            cleared=data.get("cleared"),
            deleted=bool(data.get("deleted", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "date": self.date,
            "amount": self.amount,
            "payee_name": self.payee_name,
            "memo": self.memo,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "import_id": self.import_id,
            "cleared": self.cleared,
            "deleted": self.deleted,
        }


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar dates."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Date range start {self.start} is after end {self.end}")

    @classmethod
    def last_n_days(cls, days: int, today: date | None = None) -> DateRange:
        """Window covering `days` days back from today, today included."""
        if days < 0:
            raise ValueError("days must be >= 0")
        today = today or date.today()
        return cls(start=today - timedelta(days=days), end=today)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class SyncOptions:
    """Per-run switches."""

    dry_run: bool = False
    # Source account ids or names; None means every enabled mapping
    account_filter: tuple[str, ...] | None = None

    def includes(self, mapping: AccountMapping) -> bool:
        if not self.account_filter:
            return True
        return (
            mapping.source_account_id in self.account_filter
            or mapping.source_account_name in self.account_filter
        )


@dataclass(frozen=True)
class SyncContext:
    """Everything one sync run needs, passed explicitly."""

    mappings: tuple[AccountMapping, ...]
    date_range: DateRange
    settings: SyncSettings
    categorization: CategorizationSettings
    profile_id: str = "default"
    options: SyncOptions = field(default_factory=SyncOptions)

    @property
    def active_mappings(self) -> list[AccountMapping]:
        """Enabled mappings that pass the account filter, in config order."""
        return [m for m in self.mappings if m.enabled and self.options.includes(m)]
