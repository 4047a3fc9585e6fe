"""Test fixtures and utilities."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from pathlib import Path

import pytest

from ynab_importer.schemas import NormalizedTransaction, fingerprint_of
from ynab_importer.services.remote_sync import SubmitResult
from ynab_importer.state_store import AccountRecord, StateStore

BUDGET_UUID = "0f5e1a9c-3c1d-4b3e-9a42-6c1c2a0b7d11"
ACCOUNT_UUID = "7b2c9d4e-8f10-4a6b-b1c2-d3e4f5a6b7c8"
OTHER_ACCOUNT_UUID = "1a2b3c4d-5e6f-4711-8899-aabbccddeeff"


class FakeYnabAdapter:
    """In-memory RemoteSyncAdapter behaving like YNAB's import id dedup.

    A transaction is created at most once per import id; re-submitting an
    import id maps to the transaction created the first time.
    """

    def __init__(self) -> None:
        self.created: dict[str, str] = {}
        self.calls: list[tuple[str, str, list[NormalizedTransaction]]] = []
        self.queued: list[SubmitResult] = []
        self.before_submit: Callable[[Sequence[NormalizedTransaction]], None] | None = None

    @property
    def creations(self) -> int:
        return len(self.created)

    def fail_next(self, result: SubmitResult) -> None:
        self.queued.append(result)

    def submit(
        self,
        account_remote_id: str,
        idempotency_token: str,
        records: Sequence[NormalizedTransaction],
    ) -> SubmitResult:
        self.calls.append((account_remote_id, idempotency_token, list(records)))
        if self.before_submit is not None:
            self.before_submit(records)
        if self.queued:
            return self.queued.pop(0)

        remote_ids = {}
        for index, record in enumerate(records):
            import_id = f"{account_remote_id}/{fingerprint_of(record).import_id()}"
            if import_id not in self.created:
                self.created[import_id] = f"ynab-tx-{len(self.created) + 1}"
            remote_ids[index] = self.created[import_id]
        return SubmitResult.success(remote_ids)


def make_tx(
    account: AccountRecord,
    amount: int,
    day: str,
    payee: str | None = None,
    memo: str | None = None,
) -> NormalizedTransaction:
    """Build a normalized transaction for an account from an ISO date."""
    return NormalizedTransaction(
        account_id=account.id,
        amount=amount,
        date_posted=date.fromisoformat(day),
        payee=payee,
        memo=memo,
    )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_ledger.sqlite3"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh ledger store."""
    return StateStore(temp_db)


@pytest.fixture
def account(store) -> AccountRecord:
    """Account 'Checking' in budget 'Household'."""
    budget_id = store.get_or_create_budget(BUDGET_UUID, "Household")
    store.upsert_accounts(budget_id, [(ACCOUNT_UUID, "Checking")])
    return store.get_account_by_uuid(ACCOUNT_UUID)


@pytest.fixture
def other_account(store, account) -> AccountRecord:
    """Second account 'Visa' in the same budget."""
    store.upsert_accounts(account.budget_id, [(OTHER_ACCOUNT_UUID, "Visa")])
    return store.get_account_by_uuid(OTHER_ACCOUNT_UUID)


@pytest.fixture
def adapter() -> FakeYnabAdapter:
    return FakeYnabAdapter()
