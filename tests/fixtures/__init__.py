"""
Test doubles and builders for sync tests.

- make_transaction / make_mapping: build domain objects with sane defaults
- FakeSource: in-memory Up client with scripted failures
- FakeDestination: in-memory YNAB client with import_id dedup
- up_transaction_resource: Up JSON:API transaction payload
"""

from datetime import datetime, timedelta, timezone

from up_ynab_sync.schemas.transactions import (
    AccountMapping,
    AccountType,
    DestinationTransaction,
    SourceTransaction,
    SourceTransactionStatus,
)
from up_ynab_sync.ynab_client import YnabDuplicateImportError

AEDT = timezone(timedelta(hours=11))


def make_transaction(
    id: str = "tx-1",
    amount: int = -4250,
    description: str = "Coffee Shop",
    account_id: str = "up-spending",
    settled: bool = True,
    created_at: datetime | None = None,
    settled_at: datetime | None = None,
    raw_text: str | None = None,
    message: str | None = None,
) -> SourceTransaction:
    """Build a SourceTransaction created 2024-03-01 09:30 +11:00."""
    created_at = created_at or datetime(2024, 3, 1, 9, 30, tzinfo=AEDT)
    if settled and settled_at is None:
        settled_at = created_at + timedelta(minutes=30)
    return SourceTransaction(
        id=id,
        account_id=account_id,
        amount=amount,
        description=description,
        created_at=created_at,
        status=SourceTransactionStatus.SETTLED if settled else SourceTransactionStatus.HELD,
        settled_at=settled_at if settled else None,
        raw_text=raw_text,
        message=message,
    )


def make_mapping(
    source_account_id: str = "up-spending",
    destination_account_id: str = "ynab-spending",
    account_type: AccountType = AccountType.TRANSACTIONAL,
    enabled: bool = True,
    name: str = "Spending",
) -> AccountMapping:
    return AccountMapping(
        source_account_id=source_account_id,
        source_account_name=name,
        source_account_type=account_type,
        destination_account_id=destination_account_id,
        destination_account_name=f"YNAB {name}",
        enabled=enabled,
    )


class FakeSource:
    """In-memory source ledger.

    `failures` maps account id to exceptions raised (in order) before the
    account's transactions are returned.
    """

    def __init__(self, transactions=None, failures=None):
        self.transactions: dict[str, list[SourceTransaction]] = transactions or {}
        self.failures: dict[str, list[Exception]] = failures or {}
        self.calls: list[tuple] = []

    def list_transactions(self, account_id, since, until=None):
        self.calls.append((account_id, since, until))
        pending = self.failures.get(account_id)
        if pending:
            raise pending.pop(0)
        return list(self.transactions.get(account_id, []))


class FakeDestination:
    """In-memory destination ledger.

    `failures` maps import_id to exceptions raised (in order) on create.
    `amount_overrides` makes the reported amount differ from the submitted one.
    `after_create` is called with each created transaction.
    """

    def __init__(self, failures=None, amount_overrides=None, omit_amount=False, after_create=None):
        self.failures: dict[str, list[Exception]] = failures or {}
        self.amount_overrides: dict[str, int] = amount_overrides or {}
        self.omit_amount = omit_amount
        self.after_create = after_create
        self.created: dict[str, DestinationTransaction] = {}
        self.requests = []

    def create_transaction(self, request):
        self.requests.append(request)
        pending = self.failures.get(request.import_id)
        if pending:
            raise pending.pop(0)
        if request.import_id in self.created:
            raise YnabDuplicateImportError(request.import_id, self.created[request.import_id].id)

        stored = DestinationTransaction(
            id=f"ynab-{len(self.created) + 1}",
            account_id=request.account_id,
            date=request.date,
            amount=self.amount_overrides.get(request.import_id, request.amount),
            payee_name=request.payee_name,
            memo=request.memo,
            category_id=request.category_id,
            import_id=request.import_id,
        )
        self.created[request.import_id] = stored
        if self.after_create:
            self.after_create(stored)

        if self.omit_amount:
            return DestinationTransaction(
                id=stored.id,
                account_id=stored.account_id,
                date=stored.date,
                amount=None,
                import_id=stored.import_id,
            )
        return stored

    def get_transaction(self, transaction_id):
        for tx in self.created.values():
            if tx.id == transaction_id:
                return tx
        raise KeyError(transaction_id)


def up_transaction_resource(
    id: str = "ABC123",
    value_in_base_units: int = -4250,
    status: str = "SETTLED",
    description: str = "Coffee Shop",
    account_id: str = "up-spending",
    raw_text: str | None = "COFFEE SHOP SYDNEY",
    message: str | None = None,
) -> dict:
    """An Up JSON:API transaction resource."""
    return {
        "type": "transactions",
        "id": id,
        "attributes": {
            "status": status,
            "rawText": raw_text,
            "description": description,
            "message": message,
            "amount": {
                "currencyCode": "AUD",
                "value": f"{value_in_base_units / 100:.2f}",
                "valueInBaseUnits": value_in_base_units,
            },
            "settledAt": "2024-03-01T10:00:00+11:00" if status == "SETTLED" else None,
            "createdAt": "2024-03-01T09:30:00+11:00",
        },
        "relationships": {
            "account": {"data": {"type": "accounts", "id": account_id}},
        },
    }
