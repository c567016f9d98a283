"""
Up Banking API client implementation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.transactions import AccountType, SourceTransaction, SourceTransactionStatus

logger = logging.getLogger(__name__)


class UpError(Exception):
    """Base exception for Up client errors."""

    pass


class UpAPIError(UpError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        retry_after: float | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.retry_after = retry_after
        super().__init__(f"Up API error {status_code}: {message}")


class UpAuthenticationError(UpAPIError):
    """Token missing, invalid or revoked (HTTP 401)."""

    pass


class UpRateLimitError(UpAPIError):
    """Too many requests (HTTP 429)."""

    pass


class UpConnectionError(UpError):
    """Failed to connect to Up."""

    pass


class UpPaginationError(UpError):
    """More pages remain after max_pages; the listing would be incomplete."""

    def __init__(self, endpoint: str, max_pages: int):
        self.endpoint = endpoint
        self.max_pages = max_pages
        super().__init__(
            f"{endpoint} has more than {max_pages} pages; "
            "raise up.max_pages or narrow the date range"
        )


@dataclass
class UpAccount:
    """Up account representation."""

    id: str
    display_name: str
    account_type: AccountType
    balance: int  # cents
    currency_code: str = "AUD"
    ownership_type: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UpAccount":
        attrs = data.get("attributes", {})
        balance = attrs.get("balance", {})
        return cls(
            id=data["id"],
            display_name=attrs.get("displayName", ""),
            account_type=AccountType.parse(attrs.get("accountType", "TRANSACTIONAL")),
            balance=int(balance.get("valueInBaseUnits", 0)),
            currency_code=balance.get("currencyCode", "AUD"),
            ownership_type=attrs.get("ownershipType"),
        )


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_transaction(data: dict[str, Any], account_id: str | None = None) -> SourceTransaction:
    """
    Parse a JSON:API transaction resource.

    Raises:
        UpAPIError: If required fields are missing
    """
    attrs = data.get("attributes", {})
    amount = attrs.get("amount") or {}

    try:
        value_in_base_units = amount["valueInBaseUnits"]
        created_at = _parse_datetime(attrs["createdAt"])
    except (KeyError, ValueError) as e:
        raise UpAPIError(
            500, f"Malformed transaction {data.get('id')}: {e}"
        ) from e

    relationships = data.get("relationships", {})
    related_account = (relationships.get("account") or {}).get("data") or {}

    return SourceTransaction(
        id=data["id"],
        account_id=related_account.get("id") or account_id or "",
        amount=int(value_in_base_units),
        description=attrs.get("description") or "",
        created_at=created_at,
        status=SourceTransactionStatus(attrs.get("status", "SETTLED")),
        settled_at=_parse_datetime(attrs.get("settledAt")),
        raw_text=attrs.get("rawText"),
        message=attrs.get("message"),
        currency_code=amount.get("currencyCode", "AUD"),
    )


class UpClient:
    """
    Client for the Up Banking API.

    Features:
    - List accounts
    - List transactions per account over a time window
    - Cursor pagination via links.next
    - Transport-level retry for idempotent GETs on 5xx

    429 and 401 are surfaced to the caller, which owns the retry policy.
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_BASE_URL = "https://api.up.com.au/api/v1"

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        page_size: int = 100,
        max_pages: int = 50,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize Up client.

        Args:
            token: Personal access token (up:yeah:...)
            base_url: API root
            timeout: Request timeout in seconds
            page_size: Items per page (Up maximum is 100)
            max_pages: Stop following links.next after this many pages
            max_retries: Transport retries for 5xx / connection resets
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = min(page_size, 100)
        self.max_pages = max_pages

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
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

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling.

        `endpoint` may be a path under base_url or an absolute pagination URL.
        """
        url = endpoint if endpoint.startswith("http") else f"{self.base_url}{endpoint}"

        logger.debug("API Request: %s %s %s", method, url, params or "")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise UpConnectionError(f"Failed to connect to Up at {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise UpConnectionError(f"Request to Up timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Request error for %s: %s", url, e)
            raise UpError(f"Request failed: {e}") from e

        logger.debug("Response status: %s", response.status_code)

        if not response.ok:
            message = response.reason
            try:
                errors = response.json().get("errors", [])
                if errors:
                    message = "; ".join(
                        f"{err.get('title', '')}: {err.get('detail', '')}".strip(": ")
                        for err in errors
                    )
            except ValueError:
                pass

            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.error("Up API error %s: %s", response.status_code, message)

            if response.status_code == 401:
                raise UpAuthenticationError(401, message, response.text)
            if response.status_code == 429:
                raise UpRateLimitError(429, message, response.text, retry_after)
            raise UpAPIError(response.status_code, message, response.text, retry_after)

        return response

    def _paginate(self, endpoint: str, params: dict | None = None) -> list[dict[str, Any]]:
        """Collect `data` items across pages."""
        items: list[dict[str, Any]] = []
        next_url: str | None = endpoint
        page = 0

        while next_url:
            if page >= self.max_pages:
                logger.error("%s has more than %d pages", endpoint, self.max_pages)
                raise UpPaginationError(endpoint, self.max_pages)
            # The next link already carries the query string
            response = self._request("GET", next_url, params=params if page == 0 else None)
            body = response.json()
            items.extend(body.get("data", []))
            next_url = (body.get("links") or {}).get("next")
            page += 1

        return items

    def test_connection(self) -> bool:
        """Test connection and token validity."""
        try:
            self._request("GET", "/util/ping")
            return True
        except UpError:
            return False

    def list_accounts(self, account_type: AccountType | None = None) -> list[UpAccount]:
        """List accounts, optionally filtered by type."""
        params: dict[str, Any] = {"page[size]": self.page_size}
        if account_type:
            params["filter[accountType]"] = account_type.value
        return [UpAccount.from_api(item) for item in self._paginate("/accounts", params)]

    def get_account(self, account_id: str) -> UpAccount:
        """Get a single account (raises UpAPIError 404 if unknown)."""
        response = self._request("GET", f"/accounts/{account_id}")
        return UpAccount.from_api(response.json()["data"])

    def list_transactions(
        self,
        account_id: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[SourceTransaction]:
        """
        List an account's transactions created within [since, until).

        Both held and settled transactions are returned; filtering is the
        caller's concern.
        """
        params: dict[str, Any] = {
            "page[size]": self.page_size,
            "filter[since]": since.isoformat(),
        }
        if until is not None:
            params["filter[until]"] = until.isoformat()

        items = self._paginate(f"/accounts/{account_id}/transactions", params)
        transactions = [parse_transaction(item, account_id) for item in items]

        logger.info(
            "Fetched %d transaction(s) for Up account %s", len(transactions), account_id
        )
        return transactions


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
