"""Remote sync adapter contract and its YNAB implementation.

The import engine hands a batch of new transactions to an adapter together
with an idempotency token. The adapter answers with a tagged result:

- success: mapping of batch index -> remote transaction id
- retryable failure: nothing known to be final; re-run the file later
- permanent failure: the remote side rejected the batch; operator action

Adapters never raise for classified remote failures; the engine's retry
policy works on the result tags alone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from ..schemas.fingerprint import fingerprint_of
from ..ynab_client import YnabAPIError, YnabConnectionError, YnabError

if TYPE_CHECKING:
    from ..schemas.transaction import NormalizedTransaction
    from ..ynab_client import YnabClient

logger = logging.getLogger(__name__)

# YNAB field limits
PAYEE_NAME_MAX_LENGTH = 200
MEMO_MAX_LENGTH = 500


class AdapterErrorKind(str, Enum):
    """Classification of a failed remote submission."""

    RETRYABLE = "RETRYABLE"  # timeout, connection failure, 429, 5xx
    PERMANENT = "PERMANENT"  # validation rejection, auth failure


@dataclass(frozen=True)
class AdapterError:
    """Why a submission failed."""

    kind: AdapterErrorKind
    reason: str

    @property
    def retryable(self) -> bool:
        return self.kind == AdapterErrorKind.RETRYABLE

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.reason}"


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of RemoteSyncAdapter.submit."""

    remote_ids: dict[int, str] | None = None
    error: AdapterError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, remote_ids: dict[int, str]) -> SubmitResult:
        return cls(remote_ids=dict(remote_ids))

    @classmethod
    def retryable(cls, reason: str) -> SubmitResult:
        return cls(error=AdapterError(AdapterErrorKind.RETRYABLE, reason))

    @classmethod
    def permanent(cls, reason: str) -> SubmitResult:
        return cls(error=AdapterError(AdapterErrorKind.PERMANENT, reason))


class RemoteSyncAdapter(Protocol):
    """Idempotent remote transaction creation."""

    def submit(
        self,
        account_remote_id: str,
        idempotency_token: str,
        records: Sequence[NormalizedTransaction],
    ) -> SubmitResult:
        """Create records remotely; same token + records must not create twice."""
        ...


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value[:limit] if value else None


def build_ynab_transaction(account_remote_id: str, record: NormalizedTransaction) -> dict:
    """Map a normalized transaction to a YNAB SaveTransaction payload."""
    return {
        "account_id": account_remote_id,
        "date": record.date_posted.isoformat(),
        "amount": record.amount,
        "payee_name": _truncate(record.payee, PAYEE_NAME_MAX_LENGTH),
        "memo": _truncate(record.memo, MEMO_MAX_LENGTH),
        "cleared": "cleared",
        "import_id": fingerprint_of(record).import_id(),
    }


class YnabSyncAdapter:
    """RemoteSyncAdapter backed by the YNAB bulk transactions endpoint.

    Every transaction carries an import id derived from its fingerprint.
    YNAB refuses to create a second transaction with an import id it has
    already seen and reports it under duplicate_import_ids; those are
    resolved to the existing remote ids instead of being re-keyed, so a
    retry after a lost response maps onto the transactions the first
    attempt created.
    """

    def __init__(
        self,
        client: YnabClient,
        budget_lookup: Callable[[str], str | None],
    ) -> None:
        """Initialize the adapter.

        Args:
            client: YNAB API client.
            budget_lookup: Resolves a remote account id to its remote budget id.
        """
        self.client = client
        self.budget_lookup = budget_lookup

    def submit(
        self,
        account_remote_id: str,
        idempotency_token: str,
        records: Sequence[NormalizedTransaction],
    ) -> SubmitResult:
        if not records:
            return SubmitResult.success({})

        budget_id = self.budget_lookup(account_remote_id)
        if budget_id is None:
            return SubmitResult.permanent(f"No budget known for account {account_remote_id}")

        payload = [build_ynab_transaction(account_remote_id, r) for r in records]
        index_by_import_id: dict[str, int] = {}
        for index, tx in enumerate(payload):
            if tx["import_id"] in index_by_import_id:
                return SubmitResult.permanent(f"Batch repeats import id {tx['import_id']}")
            index_by_import_id[tx["import_id"]] = index

        logger.info(
            "Submitting %d transaction(s) to YNAB account %s (token %s)",
            len(payload),
            account_remote_id,
            idempotency_token,
        )

        try:
            result = self.client.create_transactions(
                budget_id, payload, idempotency_key=idempotency_token
            )
            remote_ids: dict[int, str] = {}
            for tx in result.transactions:
                index = index_by_import_id.get(tx.import_id or "")
                if index is not None:
                    remote_ids[index] = tx.id

            if result.duplicate_import_ids:
                resolved = self._resolve_duplicates(
                    budget_id, account_remote_id, records, result.duplicate_import_ids
                )
                for import_id, remote_id in resolved.items():
                    remote_ids[index_by_import_id[import_id]] = remote_id
        except YnabConnectionError as e:
            return SubmitResult.retryable(str(e))
        except YnabAPIError as e:
            if e.is_transient:
                return SubmitResult.retryable(str(e))
            return SubmitResult.permanent(str(e))
        except YnabError as e:
            return SubmitResult.retryable(str(e))

        missing = sorted(set(range(len(records))) - set(remote_ids))
        if missing:
            missing_ids = ", ".join(payload[i]["import_id"] for i in missing)
            return SubmitResult.permanent(
                f"YNAB did not return a transaction for import id(s): {missing_ids}"
            )

        return SubmitResult.success(remote_ids)

    def _resolve_duplicates(
        self,
        budget_id: str,
        account_remote_id: str,
        records: Sequence[NormalizedTransaction],
        duplicate_import_ids: list[str],
    ) -> dict[str, str]:
        """Find the existing remote ids for import ids YNAB reported as duplicates."""
        wanted = set(duplicate_import_ids)
        dates = [r.date_posted for r in records if fingerprint_of(r).import_id() in wanted]
        if not dates:
            return {}
        since = min(dates)
        logger.info(
            "Resolving %d duplicate import id(s) in account %s since %s",
            len(wanted),
            account_remote_id,
            since,
        )

        resolved: dict[str, str] = {}
        for tx in self.client.get_account_transactions(budget_id, account_remote_id, since):
            if tx.import_id in wanted and tx.import_id not in resolved:
                if tx.deleted:
                    logger.warning(
                        "Import id %s matches deleted YNAB transaction %s", tx.import_id, tx.id
                    )
                resolved[tx.import_id] = tx.id
        return resolved
