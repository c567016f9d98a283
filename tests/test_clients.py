"""
Tests for the Up Banking and YNAB API clients.

These tests use responses library to mock HTTP requests,
validating client behavior without making real API calls.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
import requests
import responses

from up_ynab_sync.schemas.transactions import (
    AccountType,
    DestinationTransactionRequest,
    SourceTransactionStatus,
)
from up_ynab_sync.up_client import (
    UpAPIError,
    UpAuthenticationError,
    UpClient,
    UpConnectionError,
    UpPaginationError,
    UpRateLimitError,
    parse_transaction,
)
from up_ynab_sync.ynab_client import (
    YnabAPIError,
    YnabAuthenticationError,
    YnabClient,
    YnabConnectionError,
    YnabDuplicateImportError,
    YnabRateLimitError,
)

from fixtures import up_transaction_resource

AEDT = timezone(timedelta(hours=11))


class TestParseTransaction:
    """Up JSON:API resources to SourceTransaction."""

    def test_settled_transaction(self):
        tx = parse_transaction(up_transaction_resource(message="flat white"))

        assert tx.id == "ABC123"
        assert tx.account_id == "up-spending"
        assert tx.amount == -4250
        assert tx.description == "Coffee Shop"
        assert tx.raw_text == "COFFEE SHOP SYDNEY"
        assert tx.message == "flat white"
        assert tx.status == SourceTransactionStatus.SETTLED
        assert tx.is_settled
        assert tx.settled_at == datetime(2024, 3, 1, 10, 0, tzinfo=AEDT)
        assert tx.created_at.utcoffset() == timedelta(hours=11)
        assert tx.currency_code == "AUD"

    def test_held_transaction(self):
        tx = parse_transaction(up_transaction_resource(status="HELD"))
        assert tx.status == SourceTransactionStatus.HELD
        assert tx.settled_at is None
        assert not tx.is_settled

    def test_account_falls_back_to_argument(self):
        resource = up_transaction_resource()
        del resource["relationships"]
        assert parse_transaction(resource, "up-saver").account_id == "up-saver"

    def test_missing_amount_is_malformed(self):
        resource = up_transaction_resource()
        del resource["attributes"]["amount"]
        with pytest.raises(UpAPIError, match="Malformed"):
            parse_transaction(resource)


class TestUpClient:
    """Test Up Banking API client."""

    BASE_URL = "https://api.up.test/api/v1"
    TOKEN = "up:yeah:test-token"

    def client(self, **kwargs):
        return UpClient(self.TOKEN, base_url=self.BASE_URL, max_retries=0, **kwargs)

    @responses.activate
    def test_test_connection_success(self):
        """Ping succeeds with a valid token."""
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/util/ping",
            json={"meta": {"id": "x", "statusEmoji": "⚡️"}},
            status=200,
        )

        assert self.client().test_connection() is True
        assert responses.calls[0].request.headers["Authorization"] == f"Bearer {self.TOKEN}"

    @responses.activate
    def test_test_connection_failure(self):
        responses.add(responses.GET, f"{self.BASE_URL}/util/ping", status=401, json={"errors": []})
        assert self.client().test_connection() is False

    @responses.activate
    def test_list_accounts(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/accounts",
            json={
                "data": [
                    {
                        "type": "accounts",
                        "id": "up-spending",
                        "attributes": {
                            "displayName": "Spending",
                            "accountType": "TRANSACTIONAL",
                            "ownershipType": "INDIVIDUAL",
                            "balance": {"currencyCode": "AUD", "value": "120.50", "valueInBaseUnits": 12050},
                        },
                    },
                    {
                        "type": "accounts",
                        "id": "up-saver",
                        "attributes": {
                            "displayName": "Rainy Day",
                            "accountType": "SAVER",
                            "balance": {"currencyCode": "AUD", "value": "1000.00", "valueInBaseUnits": 100000},
                        },
                    },
                ],
                "links": {"prev": None, "next": None},
            },
        )

        accounts = self.client().list_accounts()

        assert [a.id for a in accounts] == ["up-spending", "up-saver"]
        assert accounts[0].balance == 12050
        assert accounts[1].account_type == AccountType.SAVER

    @responses.activate
    def test_list_accounts_filter_by_type(self):
        responses.add(responses.GET, f"{self.BASE_URL}/accounts", json={"data": [], "links": {}})

        self.client().list_accounts(AccountType.SAVER)

        assert "filter%5BaccountType%5D=SAVER" in responses.calls[0].request.url

    @responses.activate
    def test_list_transactions_follows_pagination(self):
        """links.next is followed until exhausted."""
        endpoint = f"{self.BASE_URL}/accounts/up-spending/transactions"
        responses.add(
            responses.GET,
            endpoint,
            json={
                "data": [up_transaction_resource(id="tx-1")],
                "links": {"prev": None, "next": f"{endpoint}?page%5Bafter%5D=cursor1"},
            },
        )
        responses.add(
            responses.GET,
            endpoint,
            json={"data": [up_transaction_resource(id="tx-2")], "links": {"prev": None, "next": None}},
        )

        since = datetime(2024, 3, 1, tzinfo=AEDT)
        until = datetime(2024, 3, 2, tzinfo=AEDT)
        transactions = self.client(page_size=1).list_transactions("up-spending", since, until)

        assert [t.id for t in transactions] == ["tx-1", "tx-2"]
        first_url = responses.calls[0].request.url
        assert "page%5Bsize%5D=1" in first_url
        assert "filter%5Bsince%5D=2024-03-01T00%3A00%3A00%2B11%3A00" in first_url
        assert "filter%5Buntil%5D=" in first_url
        assert "cursor1" in responses.calls[1].request.url

    @responses.activate
    def test_pagination_beyond_max_pages_raises(self):
        endpoint = f"{self.BASE_URL}/accounts/up-spending/transactions"
        for i in range(3):
            responses.add(
                responses.GET,
                endpoint,
                json={
                    "data": [up_transaction_resource(id=f"tx-{i}")],
                    "links": {"next": f"{endpoint}?page%5Bafter%5D={i}"},
                },
            )

        with pytest.raises(UpPaginationError) as exc_info:
            self.client(max_pages=2).list_transactions(
                "up-spending", datetime(2024, 3, 1, tzinfo=AEDT)
            )

        assert exc_info.value.max_pages == 2
        assert "narrow the date range" in str(exc_info.value)
        assert len(responses.calls) == 2

    @responses.activate
    def test_last_page_within_max_pages(self):
        endpoint = f"{self.BASE_URL}/accounts/up-spending/transactions"
        responses.add(
            responses.GET,
            endpoint,
            json={
                "data": [up_transaction_resource(id="tx-0")],
                "links": {"next": f"{endpoint}?page%5Bafter%5D=0"},
            },
        )
        responses.add(
            responses.GET,
            endpoint,
            json={"data": [up_transaction_resource(id="tx-1")], "links": {"next": None}},
        )

        transactions = self.client(max_pages=2).list_transactions(
            "up-spending", datetime(2024, 3, 1, tzinfo=AEDT)
        )

        assert [t.id for t in transactions] == ["tx-0", "tx-1"]

    def test_page_size_capped(self):
        assert self.client(page_size=500).page_size == 100

    @responses.activate
    def test_unauthorized(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/accounts/up-spending/transactions",
            status=401,
            json={"errors": [{"status": "401", "title": "Not Authorized", "detail": "Invalid token"}]},
        )

        with pytest.raises(UpAuthenticationError) as exc_info:
            self.client().list_transactions("up-spending", datetime(2024, 3, 1, tzinfo=AEDT))

        assert exc_info.value.status_code == 401
        assert "Invalid token" in exc_info.value.message

    @responses.activate
    def test_rate_limited(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/accounts",
            status=429,
            headers={"Retry-After": "30"},
            json={"errors": [{"title": "Too Many Requests"}]},
        )

        with pytest.raises(UpRateLimitError) as exc_info:
            self.client().list_accounts()

        assert exc_info.value.retry_after == 30.0

    @responses.activate
    def test_not_found(self):
        responses.add(responses.GET, f"{self.BASE_URL}/accounts/nope", status=404, json={"errors": []})

        with pytest.raises(UpAPIError) as exc_info:
            self.client().get_account("nope")

        assert exc_info.value.status_code == 404

    @responses.activate
    def test_connection_error(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/accounts",
            body=requests.exceptions.ConnectionError("connection refused"),
        )

        with pytest.raises(UpConnectionError):
            self.client().list_accounts()


class TestYnabClient:
    """Test YNAB API client."""

    BASE_URL = "https://api.ynab.test/v1"
    TOKEN = "ynab-test-token"
    BUDGET = "budget-1"

    def client(self):
        return YnabClient(self.TOKEN, self.BUDGET, base_url=self.BASE_URL, max_retries=0)

    def request(self, **overrides):
        values = {
            "account_id": "ynab-spending",
            "date": "2024-03-01",
            "amount": -42500,
            "payee_name": "Coffee Shop",
            "import_id": "ABC123",
            "memo": "Coffee Shop",
        }
        values.update(overrides)
        return DestinationTransactionRequest(**values)

    @property
    def transactions_url(self):
        return f"{self.BASE_URL}/budgets/{self.BUDGET}/transactions"

    def created_body(self, **overrides):
        transaction = {
            "id": "ynab-tx-1",
            "account_id": "ynab-spending",
            "date": "2024-03-01",
            "amount": -42500,
            "payee_name": "Coffee Shop",
            "memo": "Coffee Shop",
            "import_id": "ABC123",
            "cleared": "cleared",
            "deleted": False,
        }
        transaction.update(overrides)
        return {"data": {"transaction_ids": [transaction["id"]], "transaction": transaction}}

    @responses.activate
    def test_test_connection_success(self):
        responses.add(responses.GET, f"{self.BASE_URL}/user", json={"data": {"user": {"id": "u"}}})
        assert self.client().test_connection() is True

    @responses.activate
    def test_test_connection_failure(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/user",
            status=401,
            json={"error": {"id": "401", "name": "unauthorized", "detail": "Unauthorized"}},
        )
        assert self.client().test_connection() is False

    @responses.activate
    def test_create_transaction(self):
        """The request body is the SaveTransaction payload wrapped in 'transaction'."""
        responses.add(responses.POST, self.transactions_url, json=self.created_body(), status=201)

        created = self.client().create_transaction(self.request(category_id="cat-1"))

        assert created.id == "ynab-tx-1"
        assert created.amount == -42500
        body = json.loads(responses.calls[0].request.body)
        assert body == {
            "transaction": {
                "account_id": "ynab-spending",
                "date": "2024-03-01",
                "amount": -42500,
                "payee_name": "Coffee Shop",
                "import_id": "ABC123",
                "cleared": "cleared",
                "approved": False,
                "memo": "Coffee Shop",
                "category_id": "cat-1",
            }
        }

    @responses.activate
    def test_create_without_memo_or_category(self):
        responses.add(responses.POST, self.transactions_url, json=self.created_body(), status=201)

        self.client().create_transaction(self.request(memo=None))

        sent = json.loads(responses.calls[0].request.body)["transaction"]
        assert "memo" not in sent
        assert "category_id" not in sent

    @responses.activate
    def test_duplicate_import_id_in_response(self):
        """YNAB lists already-imported ids instead of creating them."""
        responses.add(
            responses.POST,
            self.transactions_url,
            json={"data": {"transaction_ids": [], "duplicate_import_ids": ["ABC123"]}},
            status=201,
        )

        with pytest.raises(YnabDuplicateImportError) as exc_info:
            self.client().create_transaction(self.request())

        assert exc_info.value.import_id == "ABC123"

    @responses.activate
    def test_duplicate_import_id_conflict(self):
        responses.add(
            responses.POST,
            self.transactions_url,
            status=409,
            json={"error": {"id": "409", "name": "conflict", "detail": "import_id already exists"}},
        )

        with pytest.raises(YnabDuplicateImportError):
            self.client().create_transaction(self.request())

    @responses.activate
    def test_other_conflict_not_duplicate(self):
        responses.add(
            responses.POST,
            self.transactions_url,
            status=409,
            json={"error": {"id": "409", "name": "conflict", "detail": "budget locked"}},
        )

        with pytest.raises(YnabAPIError) as exc_info:
            self.client().create_transaction(self.request())

        assert not isinstance(exc_info.value, YnabDuplicateImportError)
        assert exc_info.value.error_name == "conflict"

    @responses.activate
    def test_validation_error(self):
        responses.add(
            responses.POST,
            self.transactions_url,
            status=400,
            json={"error": {"id": "400", "name": "bad_request", "detail": "payee_name is too long"}},
        )

        with pytest.raises(YnabAPIError) as exc_info:
            self.client().create_transaction(self.request())

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "payee_name is too long"

    @responses.activate
    def test_missing_transaction_in_response(self):
        responses.add(responses.POST, self.transactions_url, json={"data": {}}, status=201)

        with pytest.raises(YnabAPIError, match="did not include"):
            self.client().create_transaction(self.request())

    @responses.activate
    def test_unauthorized(self):
        responses.add(
            responses.POST,
            self.transactions_url,
            status=401,
            json={"error": {"id": "401", "name": "unauthorized", "detail": "Unauthorized"}},
        )

        with pytest.raises(YnabAuthenticationError):
            self.client().create_transaction(self.request())

    @responses.activate
    def test_rate_limited(self):
        responses.add(
            responses.POST,
            self.transactions_url,
            status=429,
            json={"error": {"id": "429", "name": "too_many_requests", "detail": "Too many requests"}},
        )

        with pytest.raises(YnabRateLimitError):
            self.client().create_transaction(self.request())

    @responses.activate
    def test_connection_error(self):
        responses.add(
            responses.POST,
            self.transactions_url,
            body=requests.exceptions.ConnectionError("connection reset"),
        )

        with pytest.raises(YnabConnectionError):
            self.client().create_transaction(self.request())

    @responses.activate
    def test_get_transaction(self):
        responses.add(
            responses.GET,
            f"{self.transactions_url}/ynab-tx-1",
            json={"data": {"transaction": self.created_body()["data"]["transaction"]}},
        )

        tx = self.client().get_transaction("ynab-tx-1")

        assert tx.amount == -42500
        assert tx.import_id == "ABC123"

    @responses.activate
    def test_list_accounts_hides_closed_and_deleted(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/budgets/{self.BUDGET}/accounts",
            json={
                "data": {
                    "accounts": [
                        {"id": "a1", "name": "Up Spending", "type": "checking", "balance": 120500},
                        {"id": "a2", "name": "Old", "type": "checking", "balance": 0, "closed": True},
                        {"id": "a3", "name": "Gone", "type": "savings", "balance": 0, "deleted": True},
                    ]
                }
            },
        )

        client = self.client()
        assert [a.id for a in client.list_accounts()] == ["a1"]
        assert client.list_accounts()[0].balance == 120500

    @responses.activate
    def test_list_budgets(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/budgets",
            json={"data": {"budgets": [{"id": "b1", "name": "Household"}, {"id": "b2"}]}},
        )

        assert self.client().list_budgets() == [
            {"id": "b1", "name": "Household"},
            {"id": "b2", "name": ""},
        ]

    @responses.activate
    def test_list_categories_flattens_groups(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/budgets/{self.BUDGET}/categories",
            json={
                "data": {
                    "category_groups": [
                        {
                            "name": "Everyday",
                            "categories": [
                                {"id": "c1", "name": "Groceries"},
                                {"id": "c2", "name": "Removed", "deleted": True},
                            ],
                        },
                        {"name": "Hidden group", "deleted": True, "categories": [{"id": "c3", "name": "X"}]},
                    ]
                }
            },
        )

        categories = self.client().list_categories()

        assert [(c.id, c.group_name) for c in categories] == [("c1", "Everyday")]

    @responses.activate
    def test_list_transactions_for_account(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/budgets/{self.BUDGET}/accounts/ynab-spending/transactions",
            json={
                "data": {
                    "transactions": [
                        self.created_body()["data"]["transaction"],
                        self.created_body(id="ynab-tx-2", deleted=True)["data"]["transaction"],
                    ]
                }
            },
        )

        transactions = self.client().list_transactions("ynab-spending", since_date="2024-03-01")

        assert [t.id for t in transactions] == ["ynab-tx-1"]
        assert "since_date=2024-03-01" in responses.calls[0].request.url
