"""Import reconciliation engine.

Decides, for every parsed transaction of one file and one account, whether
it is already recorded, and forwards the genuinely new ones to the remote
ledger at most once:

1. Fingerprint candidates; drop repeats inside the file (first one wins)
2. Look up the known subset in the local ledger (one read)
3. Skip already-imported transactions silently
4. Submit the rest as one batch with an idempotency token
5. On success commit the batch locally; on failure commit nothing

A commit that loses a race against a concurrent run is re-reconciled
against the current ledger a bounded number of times. Re-running the
engine on the same file is always safe: the ledger only changes after the
remote side has accepted the batch, and the remote submission is
idempotent.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..schemas.fingerprint import Fingerprint, fingerprint_of, idempotency_token
from ..schemas.transaction import format_milliunits
from ..state_store import StoreConflictError, StoreError

if TYPE_CHECKING:
    from ..schemas.transaction import NormalizedTransaction
    from ..state_store import AccountRecord, StateStore
    from .remote_sync import RemoteSyncAdapter

logger = logging.getLogger(__name__)


class ImportState(str, Enum):
    """Final state of one reconciliation run."""

    COMPLETED = "COMPLETED"
    NOTHING_TO_DO = "NOTHING_TO_DO"
    RETRYABLE_FAILURE = "RETRYABLE_FAILURE"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    CONFLICT = "CONFLICT"


@dataclass
class ImportResult:
    """Result of reconciling one file for one account."""

    state: ImportState
    source_file_name: str
    account_id: int
    new: int = 0
    skipped_duplicate: int = 0
    skipped_already_imported: int = 0
    failed: int = 0
    batch_id: int | None = None
    remote_ids: list[str] = field(default_factory=list)
    submissions: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        """True if the file needs no further processing."""
        return self.state in (ImportState.COMPLETED, ImportState.NOTHING_TO_DO)

    @property
    def retry_later(self) -> bool:
        """True if re-running the same file later may succeed without changes."""
        return self.state in (
            ImportState.RETRYABLE_FAILURE,
            ImportState.STORE_UNAVAILABLE,
            ImportState.CONFLICT,
        )

    def summary(self) -> str:
        return (
            f"new={self.new} skipped_duplicate={self.skipped_duplicate} "
            f"skipped_already_imported={self.skipped_already_imported} failed={self.failed}"
        )


class ImportReconciler:
    """Reconciles candidate transactions against the local ledger.

    Runs for the same account are serialized; different accounts may be
    reconciled concurrently from several threads, since fingerprints are
    account-scoped.

    Usage:
        reconciler = ImportReconciler(store, adapter)
        result = reconciler.reconcile(account, records, "export.csv")
    """

    DEFAULT_MAX_CONFLICT_RETRIES = 3

    def __init__(
        self,
        store: StateStore,
        adapter: RemoteSyncAdapter,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Local ledger, the only authority on known fingerprints.
            adapter: Remote sync adapter.
            max_conflict_retries: Re-reconciliations allowed after a lost
                commit race before giving up with a CONFLICT result.
        """
        if max_conflict_retries < 0:
            raise ValueError("max_conflict_retries must be >= 0")
        self.store = store
        self.adapter = adapter
        self.max_conflict_retries = max_conflict_retries
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _account_lock(self, account_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(account_id, threading.Lock())

    def reconcile(
        self,
        account: AccountRecord,
        candidates: Sequence[NormalizedTransaction],
        source_file_name: str,
    ) -> ImportResult:
        """Reconcile one file's candidate transactions for one account.

        Args:
            account: Account every candidate belongs to.
            candidates: Parsed transactions in file order.
            source_file_name: Name of the export file (part of the batch
                identity and of the audit log).

        Returns:
            ImportResult with counts and final state. Failures are reported
            in the result; nothing is committed for failed transactions.

        Raises:
            ValueError: If a candidate belongs to another account.
        """
        for record in candidates:
            if record.account_id != account.id:
                raise ValueError(
                    f"Candidate for account {record.account_id} passed for account {account.id}"
                )

        start_time = time.time()
        result = ImportResult(
            state=ImportState.NOTHING_TO_DO,
            source_file_name=source_file_name,
            account_id=account.id,
        )

        with self._account_lock(account.id):
            self._reconcile_locked(account, candidates, source_file_name, result)

        result.duration_ms = int((time.time() - start_time) * 1000)
        log = logger.info if result.success else logger.error
        log(
            "Import of %s into account %s finished %s: %s",
            source_file_name,
            account.name,
            result.state.value,
            result.summary(),
        )
        return result

    def _reconcile_locked(
        self,
        account: AccountRecord,
        candidates: Sequence[NormalizedTransaction],
        source_file_name: str,
        result: ImportResult,
    ) -> None:
        pending = self._drop_in_file_duplicates(candidates, source_file_name, result)
        if not pending:
            logger.info("No transactions in %s", source_file_name)
            return

        attempts = self.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                known = self.store.lookup_known(fp for fp, _ in pending)
            except StoreError as e:
                self._fail(result, ImportState.STORE_UNAVAILABLE, len(pending), str(e))
                return

            if known:
                for fp, record in pending:
                    if fp in known:
                        logger.info(
                            "Transaction %s on %s already imported, skipping",
                            format_milliunits(record.amount),
                            record.date_posted,
                        )
                result.skipped_already_imported += len(known)
                pending = [(fp, record) for fp, record in pending if fp not in known]

            if not pending:
                return

            records = [record for _, record in pending]
            token = idempotency_token(source_file_name, account.uuid, [fp for fp, _ in pending])
            submitted = self.adapter.submit(account.uuid, token, records)
            result.submissions += 1

            if not submitted.ok:
                state = (
                    ImportState.RETRYABLE_FAILURE
                    if submitted.error.retryable
                    else ImportState.PERMANENT_FAILURE
                )
                self._fail(result, state, len(pending), str(submitted.error))
                return

            remote_ids = submitted.remote_ids or {}
            if set(remote_ids) != set(range(len(records))):
                self._fail(
                    result,
                    ImportState.PERMANENT_FAILURE,
                    len(pending),
                    "Adapter result does not cover every submitted transaction",
                )
                return

            accepted = [(record, remote_ids[i]) for i, record in enumerate(records)]
            try:
                batch_id = self.store.commit_batch(account.id, accepted, source_file_name)
            except StoreConflictError as e:
                logger.warning(
                    "Lost commit race for %s (attempt %d/%d): %s",
                    source_file_name,
                    attempt,
                    attempts,
                    e,
                )
                continue
            except StoreError as e:
                self._fail(result, ImportState.STORE_UNAVAILABLE, len(pending), str(e))
                return

            result.new += len(accepted)
            result.batch_id = batch_id
            result.remote_ids.extend(remote_id for _, remote_id in accepted)
            result.state = ImportState.COMPLETED
            return

        self._fail(
            result,
            ImportState.CONFLICT,
            len(pending),
            f"Commit still conflicting after {attempts} attempt(s)",
        )

    def _drop_in_file_duplicates(
        self,
        candidates: Sequence[NormalizedTransaction],
        source_file_name: str,
        result: ImportResult,
    ) -> list[tuple[Fingerprint, NormalizedTransaction]]:
        """Keep the first occurrence of each fingerprint, in file order."""
        seen: set[Fingerprint] = set()
        unique = []
        for position, record in enumerate(candidates, start=1):
            fp = fingerprint_of(record)
            if fp in seen:
                logger.info(
                    "Skipping repeated transaction %s on %s (entry %d of %s)",
                    format_milliunits(record.amount),
                    record.date_posted,
                    position,
                    source_file_name,
                )
                result.skipped_duplicate += 1
                continue
            seen.add(fp)
            unique.append((fp, record))
        return unique

    @staticmethod
    def _fail(result: ImportResult, state: ImportState, failed: int, message: str) -> None:
        result.state = state
        result.failed = failed
        result.errors.append(message)
