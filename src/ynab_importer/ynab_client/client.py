"""
YNAB API client implementation.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.ynab.com/v1"


class YnabError(Exception):
    """Base exception for YNAB client errors."""

    pass


class YnabAPIError(YnabError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        error_id: str | None = None,
        name: str | None = None,
        detail: str | None = None,
        response_body: str | None = None,
    ):
        self.status_code = status_code
        self.error_id = error_id
        self.name = name
        self.detail = detail
        self.response_body = response_body

        parts = [p for p in (name, detail) if p]
        detail_str = ": ".join(parts) if parts else "no error details"
        super().__init__(f"YNAB API error {status_code}: {detail_str}")

    @property
    def is_transient(self) -> bool:
        """Rate limiting and server-side errors are worth retrying."""
        return self.status_code == 429 or self.status_code >= 500


class YnabConnectionError(YnabError):
    """Failed to reach YNAB (connection refused, DNS, timeout)."""

    pass


@dataclass
class YnabBudget:
    """YNAB budget summary."""

    id: str
    name: str


@dataclass
class YnabAccount:
    """YNAB account."""

    id: str
    name: str
    type: str | None = None
    closed: bool = False
    deleted: bool = False


@dataclass
class YnabTransaction:
    """YNAB transaction as returned by the API. Amount is in milliunits."""

    id: str
    date: str
    amount: int
    account_id: str | None = None
    import_id: str | None = None
    payee_name: str | None = None
    memo: str | None = None
    cleared: str | None = None
    deleted: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "YnabTransaction":
        return cls(
            id=data["id"],
            date=data.get("date", ""),
            amount=int(data.get("amount", 0)),
            account_id=data.get("account_id"),
            import_id=data.get("import_id"),
            payee_name=data.get("payee_name"),
            memo=data.get("memo"),
            cleared=data.get("cleared"),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass
class BulkCreateResult:
    """Response of a bulk transaction create.

    duplicate_import_ids lists import ids that YNAB already knows; no
    transaction was created for them.
    """

    transaction_ids: list[str] = field(default_factory=list)
    duplicate_import_ids: list[str] = field(default_factory=list)
    transactions: list[YnabTransaction] = field(default_factory=list)


class YnabClient:
    """
    Client for the YNAB API.

    Features:
    - Budget and account listing
    - Bulk transaction creation with import ids
    - Account transaction listing (duplicate resolution)
    - Automatic retry with backoff for reads
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize YNAB client.

        Args:
            token: Personal access token
            base_url: API root (default https://api.ynab.com/v1)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for GET requests
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        # Writes are not retried here; the import engine decides that
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
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
        json_data: dict | None = None,
        headers: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        logger.debug(f"API Request: {method} {url}")
        if json_data:
            logger.debug(f"Request body: {json.dumps(json_data, indent=2)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to {url}: {e}")
            raise YnabConnectionError(f"Failed to connect to YNAB at {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout for {url}: {e}")
            raise YnabConnectionError(f"Request to YNAB timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise YnabError(f"Request failed: {e}") from e

        logger.debug(f"Response status: {response.status_code}")

        if not response.ok:
            error_body = response.text
            error: dict = {}
            try:
                error = response.json().get("error", {}) or {}
            except ValueError:
                pass

            logger.error(f"API Error {response.status_code}: {error or response.reason}")
            logger.debug(f"Full response body: {error_body}")

            raise YnabAPIError(
                status_code=response.status_code,
                error_id=error.get("id"),
                name=error.get("name", response.reason),
                detail=error.get("detail"),
                response_body=error_body,
            )

        return response

    def test_connection(self) -> bool:
        """Test connection to the YNAB API."""
        try:
            self._request("GET", "/user")
            return True
        except YnabError:
            return False

    def get_budgets(self) -> list[YnabBudget]:
        """List budgets visible to the token."""
        response = self._request("GET", "/budgets")
        budgets = response.json().get("data", {}).get("budgets", [])
        return [YnabBudget(id=b["id"], name=b.get("name", "")) for b in budgets]

    def get_accounts(self, budget_id: str) -> list[YnabAccount]:
        """List accounts of a budget, deleted ones excluded."""
        response = self._request("GET", f"/budgets/{budget_id}/accounts")
        accounts = response.json().get("data", {}).get("accounts", [])
        return [
            YnabAccount(
                id=a["id"],
                name=a.get("name", ""),
                type=a.get("type"),
                closed=bool(a.get("closed", False)),
                deleted=bool(a.get("deleted", False)),
            )
            for a in accounts
            if not a.get("deleted", False)
        ]

    def create_transactions(
        self,
        budget_id: str,
        transactions: list[dict],
        idempotency_key: str | None = None,
    ) -> BulkCreateResult:
        """
        Create several transactions in one request.

        Args:
            budget_id: Remote budget id
            transactions: YNAB SaveTransaction dicts (amount in milliunits)
            idempotency_key: Sent as Idempotency-Key header when given.
                YNAB does not document this header and may ignore it;
                remote idempotency comes from each transaction's
                import_id, which YNAB reports back in duplicate_import_ids.

        Returns:
            BulkCreateResult with created ids and duplicate import ids

        Raises:
            YnabAPIError: If API returns an error
            YnabConnectionError: If YNAB could not be reached
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        response = self._request(
            "POST",
            f"/budgets/{budget_id}/transactions",
            json_data={"transactions": transactions},
            headers=headers,
        )

        data = response.json().get("data", {})
        result = BulkCreateResult(
            transaction_ids=list(data.get("transaction_ids") or []),
            duplicate_import_ids=list(data.get("duplicate_import_ids") or []),
            transactions=[YnabTransaction.from_api(t) for t in data.get("transactions") or []],
        )

        logger.info(
            "Created %d YNAB transaction(s), %d duplicate import id(s)",
            len(result.transaction_ids),
            len(result.duplicate_import_ids),
        )
        return result

    def get_account_transactions(
        self,
        budget_id: str,
        account_id: str,
        since_date: date | None = None,
    ) -> list[YnabTransaction]:
        """List transactions of one account, optionally from a date on."""
        params = {"since_date": since_date.isoformat()} if since_date else None
        response = self._request(
            "GET",
            f"/budgets/{budget_id}/accounts/{account_id}/transactions",
            params=params,
        )
        transactions = response.json().get("data", {}).get("transactions", [])
        return [YnabTransaction.from_api(t) for t in transactions]
