"""
YNAB API client implementation.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.transactions import DestinationTransaction, DestinationTransactionRequest

logger = logging.getLogger(__name__)


class YnabError(Exception):
    """Base exception for YNAB client errors."""

    pass


class YnabAPIError(YnabError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_name: str | None = None,
        response_body: str | None = None,
        retry_after: float | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.error_name = error_name
        self.response_body = response_body
        self.retry_after = retry_after
        label = f" ({error_name})" if error_name else ""
        super().__init__(f"YNAB API error {status_code}{label}: {message}")


class YnabAuthenticationError(YnabAPIError):
    """Token missing, invalid or revoked (HTTP 401)."""

    pass


class YnabRateLimitError(YnabAPIError):
    """Too many requests (HTTP 429). YNAB allows 200 requests per hour per token."""

    pass


class YnabConnectionError(YnabError):
    """Failed to connect to YNAB."""

    pass


class YnabDuplicateImportError(YnabError):
    """Transaction already exists (duplicate import_id)."""

    def __init__(self, import_id: str, existing_id: str | None = None):
        self.import_id = import_id
        self.existing_id = existing_id
        super().__init__(f"Transaction with import_id '{import_id}' already exists")


@dataclass
class YnabAccount:
    """YNAB account representation. Balances are milliunits."""

    id: str
    name: str
    type: str
    balance: int
    cleared_balance: int
    on_budget: bool = True
    closed: bool = False
    deleted: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "YnabAccount":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data.get("type", ""),
            balance=int(data.get("balance", 0)),
            cleared_balance=int(data.get("cleared_balance", 0)),
            on_budget=bool(data.get("on_budget", True)),
            closed=bool(data.get("closed", False)),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass
class YnabCategory:
    """YNAB category representation."""

    id: str
    name: str
    group_name: str
    hidden: bool = False


class YnabClient:
    """
    Client for the YNAB API, scoped to one budget.

    Features:
    - Create transactions with import_id deduplication
    - Read transactions back for amount verification
    - Account and category lookup
    - Transport-level retry for idempotent GETs on 5xx

    POSTs are never retried here; the sync engine owns that decision and the
    import_id makes a repeated create safe.
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_BASE_URL = "https://api.ynab.com/v1"

    def __init__(
        self,
        token: str,
        budget_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize YNAB client.

        Args:
            token: Personal access token
            budget_id: Budget id, or "last-used"
            base_url: API root
            timeout: Request timeout in seconds
            max_retries: Transport retries for GET on 5xx
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.budget_id = budget_id
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @property
    def _budget_path(self) -> str:
        return f"/budgets/{self.budget_id}"

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        logger.debug("API Request: %s %s", method, url)
        if json_data:
            logger.debug("Request body: %s", json.dumps(json_data, indent=2))

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise YnabConnectionError(f"Failed to connect to YNAB at {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise YnabConnectionError(f"Request to YNAB timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Request error for %s: %s", url, e)
            raise YnabError(f"Request failed: {e}") from e

        logger.debug("Response status: %s", response.status_code)

        if not response.ok:
            message = response.reason
            error_name = None
            try:
                error = response.json().get("error", {})
                message = error.get("detail") or message
                error_name = error.get("name")
            except ValueError:
                pass

            retry_after = None
            header = response.headers.get("Retry-After")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None

            logger.error("YNAB API error %s: %s", response.status_code, message)

            if response.status_code == 401:
                raise YnabAuthenticationError(401, message, error_name, response.text)
            if response.status_code == 429:
                raise YnabRateLimitError(429, message, error_name, response.text, retry_after)
            raise YnabAPIError(
                response.status_code, message, error_name, response.text, retry_after
            )

        return response

    def test_connection(self) -> bool:
        """Test connection and token validity."""
        try:
            self._request("GET", "/user")
            return True
        except YnabError:
            return False

    def list_budgets(self) -> list[dict[str, str]]:
        """List budgets as {id, name} dicts."""
        response = self._request("GET", "/budgets")
        budgets = response.json().get("data", {}).get("budgets", [])
        return [{"id": b["id"], "name": b.get("name", "")} for b in budgets]

    def list_accounts(self, include_closed: bool = False) -> list[YnabAccount]:
        """List the budget's accounts (deleted accounts are never returned)."""
        response = self._request("GET", f"{self._budget_path}/accounts")
        accounts = [
            YnabAccount.from_api(a)
            for a in response.json().get("data", {}).get("accounts", [])
        ]
        return [a for a in accounts if not a.deleted and (include_closed or not a.closed)]

    def get_account(self, account_id: str) -> YnabAccount:
        """Get a single account (raises YnabAPIError 404 if unknown)."""
        response = self._request("GET", f"{self._budget_path}/accounts/{account_id}")
        return YnabAccount.from_api(response.json()["data"]["account"])

    def list_categories(self) -> list[YnabCategory]:
        """Flatten category groups into a list."""
        response = self._request("GET", f"{self._budget_path}/categories")
        categories: list[YnabCategory] = []
        for group in response.json().get("data", {}).get("category_groups", []):
            if group.get("deleted"):
                continue
            for cat in group.get("categories", []):
                if cat.get("deleted"):
                    continue
                categories.append(
                    YnabCategory(
                        id=cat["id"],
                        name=cat.get("name", ""),
                        group_name=group.get("name", ""),
                        hidden=bool(cat.get("hidden", False)),
                    )
                )
        return categories

    def list_transactions(
        self,
        account_id: str | None = None,
        since_date: str | None = None,
    ) -> list[DestinationTransaction]:
        """List non-deleted transactions, for one account or the whole budget."""
        if account_id:
            endpoint = f"{self._budget_path}/accounts/{account_id}/transactions"
        else:
            endpoint = f"{self._budget_path}/transactions"
        params = {"since_date": since_date} if since_date else None

        response = self._request("GET", endpoint, params=params)
        transactions = [
            DestinationTransaction.from_api(t)
            for t in response.json().get("data", {}).get("transactions", [])
        ]
        return [t for t in transactions if not t.deleted]

    def get_transaction(self, transaction_id: str) -> DestinationTransaction:
        """Get a single transaction."""
        response = self._request("GET", f"{self._budget_path}/transactions/{transaction_id}")
        return DestinationTransaction.from_api(response.json()["data"]["transaction"])

    def create_transaction(self, request: DestinationTransactionRequest) -> DestinationTransaction:
        """
        Create a transaction.

        Returns:
            The created transaction as reported by YNAB

        Raises:
            YnabDuplicateImportError: If YNAB already holds this import_id
            YnabAPIError: If API returns an error
        """
        try:
            response = self._request(
                "POST",
                f"{self._budget_path}/transactions",
                json_data={"transaction": request.to_dict()},
            )
        except YnabAPIError as e:
            if e.status_code == 409 and "import_id" in (e.response_body or ""):
                logger.info("YNAB reports import_id %s already exists", request.import_id)
                raise YnabDuplicateImportError(request.import_id) from e
            raise

        data = response.json().get("data", {})

        if request.import_id in (data.get("duplicate_import_ids") or []):
            logger.info("YNAB reports import_id %s already exists", request.import_id)
            raise YnabDuplicateImportError(request.import_id)

        transaction = data.get("transaction")
        if not transaction:
            raise YnabAPIError(
                response.status_code,
                "Create response did not include the transaction",
                response_body=response.text,
            )

        created = DestinationTransaction.from_api(transaction)
        logger.info("Created YNAB transaction id=%s import_id=%s", created.id, request.import_id)
        return created
