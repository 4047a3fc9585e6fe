"""Tests for the ImportReconciler.

These tests verify:
- In-file duplicate collapsing and already-imported skipping
- Idempotent re-runs (no remote call on the second run)
- Retryable / permanent adapter failures commit nothing
- Store unavailability aborts without partial state
- Conflict re-reconciliation after a lost commit race
- Per-account isolation under concurrency
"""

from __future__ import annotations

import threading
from datetime import date

import pytest
from conftest import FakeYnabAdapter, make_tx

from ynab_importer.schemas import fingerprint, fingerprint_of
from ynab_importer.services.reconciliation import ImportReconciler, ImportState
from ynab_importer.services.remote_sync import SubmitResult
from ynab_importer.state_store import StoreUnavailableError


@pytest.fixture
def reconciler(store, adapter) -> ImportReconciler:
    return ImportReconciler(store, adapter)


@pytest.fixture
def january(account):
    """Input batch with one repeated line."""
    return [
        make_tx(account, -1500, "2024-01-05", "PARKING"),
        make_tx(account, -1500, "2024-01-05", "PARKING"),
        make_tx(account, 2000, "2024-01-06", "REFUND"),
    ]


class TestReconcileScenarios:
    """End-to-end engine scenarios."""

    def test_first_import(self, reconciler, store, adapter, account, january):
        """Two new, one in-file duplicate, one remote call with two records."""
        result = reconciler.reconcile(account, january, "jan.csv")

        assert result.state == ImportState.COMPLETED
        assert result.success
        assert result.new == 2
        assert result.skipped_duplicate == 1
        assert result.skipped_already_imported == 0
        assert result.failed == 0
        assert store.count_imported(account.id) == 2
        assert len(adapter.calls) == 1
        assert len(adapter.calls[0][2]) == 2

    def test_rerun_is_noop(self, reconciler, store, adapter, account, january):
        """Re-running the same file makes no remote call."""
        reconciler.reconcile(account, january, "jan.csv")

        result = reconciler.reconcile(account, january, "jan.csv")

        assert result.state == ImportState.NOTHING_TO_DO
        assert result.success
        assert result.new == 0
        assert result.skipped_already_imported == 2
        assert result.skipped_duplicate == 1
        assert len(adapter.calls) == 1
        assert store.count_imported(account.id) == 2
        assert len(store.list_batches()) == 1

    def test_empty_input(self, reconciler, adapter, account):
        result = reconciler.reconcile(account, [], "empty.csv")

        assert result.state == ImportState.NOTHING_TO_DO
        assert result.success
        assert adapter.calls == []

    def test_first_occurrence_kept(self, reconciler, adapter, account):
        """Duplicates collapse regardless of memo; the first line is submitted."""
        records = [
            make_tx(account, -7880, "2024-11-16", "SQ ICECREAM", "Rewards earned: 0.04"),
            make_tx(account, -7880, "2024-11-16", "SQ *ICECREAM", "Category: Other"),
        ]

        result = reconciler.reconcile(account, records, "nov.csv")

        assert result.new == 1
        assert result.skipped_duplicate == 1
        assert adapter.calls[0][2][0].memo == "Rewards earned: 0.04"

    def test_zero_amount_imported(self, reconciler, store, account):
        result = reconciler.reconcile(account, [make_tx(account, 0, "2024-01-05")], "zero.csv")

        assert result.new == 1
        assert store.lookup_known([fingerprint(0, date(2024, 1, 5), account.id)])

    def test_overlapping_files(self, reconciler, adapter, account):
        """A later file only submits what earlier files did not import."""
        reconciler.reconcile(
            account,
            [make_tx(account, -1500, "2024-01-05"), make_tx(account, 2000, "2024-01-06")],
            "jan-1.csv",
        )

        result = reconciler.reconcile(
            account,
            [
                make_tx(account, -1500, "2024-01-05", memo="now with memo"),
                make_tx(account, 2000, "2024-01-06"),
                make_tx(account, -300, "2024-01-07"),
            ],
            "jan-2.csv",
        )

        assert result.new == 1
        assert result.skipped_already_imported == 2
        assert [r.amount for r in adapter.calls[-1][2]] == [-300]

    def test_audit_log_records_remote_ids(self, reconciler, store, account, january):
        result = reconciler.reconcile(account, january, "jan.csv")

        batch = store.get_batch(result.batch_id)
        assert batch.file_name == "jan.csv"
        assert batch.transaction_ids == result.remote_ids
        assert len(batch.transaction_ids) == 2

    def test_idempotency_token_passed(self, reconciler, adapter, account, january):
        reconciler.reconcile(account, january, "jan.csv")

        account_remote_id, token, _ = adapter.calls[0]
        assert account_remote_id == account.uuid
        assert len(token) == 32

    def test_candidate_for_other_account_rejected(self, reconciler, account, other_account):
        with pytest.raises(ValueError):
            reconciler.reconcile(account, [make_tx(other_account, 1, "2024-01-01")], "x.csv")


class TestAccountIsolation:
    def test_same_transaction_in_two_accounts(self, reconciler, store, account, other_account):
        reconciler.reconcile(account, [make_tx(account, -1500, "2024-01-05")], "a.csv")

        result = reconciler.reconcile(
            other_account, [make_tx(other_account, -1500, "2024-01-05")], "b.csv"
        )

        assert result.new == 1
        assert store.count_imported() == 2


class TestAdapterFailures:
    """Remote failures never commit and never lose records."""

    def test_retryable_failure_commits_nothing(self, reconciler, store, adapter, account, january):
        adapter.fail_next(SubmitResult.retryable("timed out"))

        result = reconciler.reconcile(account, january, "jan.csv")

        assert result.state == ImportState.RETRYABLE_FAILURE
        assert not result.success
        assert result.retry_later
        assert result.failed == 2
        assert result.new == 0
        assert "timed out" in result.errors[0]
        assert store.count_imported() == 0
        assert store.list_batches() == []

        retry = reconciler.reconcile(account, january, "jan.csv")
        assert retry.state == ImportState.COMPLETED
        assert retry.new == 2

    def test_permanent_failure_records_reappear(self, reconciler, store, adapter, account, january):
        adapter.fail_next(SubmitResult.permanent("amount invalid"))

        result = reconciler.reconcile(account, january, "jan.csv")

        assert result.state == ImportState.PERMANENT_FAILURE
        assert not result.retry_later
        assert result.failed == 2
        assert store.count_imported() == 0

        # Next run offers the same records again
        reconciler.reconcile(account, january, "jan.csv")
        assert len(adapter.calls[1][2]) == 2

    def test_incomplete_adapter_mapping_is_permanent(self, reconciler, store, adapter, account):
        adapter.fail_next(SubmitResult.success({0: "r-1"}))

        result = reconciler.reconcile(
            account,
            [make_tx(account, 1, "2024-01-01"), make_tx(account, 2, "2024-01-02")],
            "x.csv",
        )

        assert result.state == ImportState.PERMANENT_FAILURE
        assert store.count_imported() == 0


class TestStoreFailures:
    def test_lookup_unavailable(self, reconciler, store, adapter, account, january, monkeypatch):
        def unavailable(fingerprints):
            raise StoreUnavailableError("database is locked")

        monkeypatch.setattr(store, "lookup_known", unavailable)

        result = reconciler.reconcile(account, january, "jan.csv")

        assert result.state == ImportState.STORE_UNAVAILABLE
        assert result.retry_later
        assert result.failed == 2
        assert adapter.calls == []

    def test_commit_unavailable_then_rerun(self, reconciler, store, adapter, account, january, monkeypatch):
        """Remote success with a failed local commit converges without remote duplicates."""
        original_commit = store.commit_batch

        def unavailable(*args, **kwargs):
            raise StoreUnavailableError("disk I/O error")

        monkeypatch.setattr(store, "commit_batch", unavailable)
        result = reconciler.reconcile(account, january, "jan.csv")

        assert result.state == ImportState.STORE_UNAVAILABLE
        assert store.count_imported() == 0
        assert adapter.creations == 2

        monkeypatch.setattr(store, "commit_batch", original_commit)
        retry = reconciler.reconcile(account, january, "jan.csv")

        assert retry.state == ImportState.COMPLETED
        assert retry.new == 2
        assert adapter.creations == 2
        assert store.count_imported() == 2


class TestConflicts:
    """Lost commit races are re-reconciled against the ledger."""

    def _concurrent_commit_of(self, store, account, record, remote_id):
        """Hook simulating another process committing record during our submit."""
        done = []

        def hook(records):
            if not done:
                done.append(True)
                store.commit_batch(account.id, [(record, remote_id)], "other-run.csv")

        return hook

    def test_conflict_converges(self, store, adapter, account):
        records = [
            make_tx(account, -1500, "2024-01-05"),
            make_tx(account, 2000, "2024-01-06"),
            make_tx(account, -300, "2024-01-07"),
        ]
        adapter.before_submit = self._concurrent_commit_of(store, account, records[0], "other-1")
        reconciler = ImportReconciler(store, adapter)

        result = reconciler.reconcile(account, records, "jan.csv")

        assert result.state == ImportState.COMPLETED
        assert result.new == 2
        assert result.skipped_already_imported == 1
        assert store.count_imported() == 3
        # Second submission only carries the still-missing records
        assert len(adapter.calls) == 2
        assert [r.amount for r in adapter.calls[1][2]] == [2000, -300]
        assert adapter.calls[0][1] != adapter.calls[1][1]
        # Re-submission did not create anything twice remotely
        assert adapter.creations == 3

    def test_conflict_retries_bounded(self, store, adapter, account):
        record = make_tx(account, -1500, "2024-01-05")
        adapter.before_submit = self._concurrent_commit_of(store, account, record, "other-1")
        reconciler = ImportReconciler(store, adapter, max_conflict_retries=0)

        result = reconciler.reconcile(
            account, [record, make_tx(account, 2000, "2024-01-06")], "jan.csv"
        )

        assert result.state == ImportState.CONFLICT
        assert result.retry_later
        assert result.failed == 2
        assert store.count_imported() == 1

    def test_negative_retry_bound_rejected(self, store, adapter):
        with pytest.raises(ValueError):
            ImportReconciler(store, adapter, max_conflict_retries=-1)


class TestConcurrency:
    def test_concurrent_runs_same_file(self, store, account):
        """Parallel runs of one file import each transaction exactly once."""
        adapter = FakeYnabAdapter()
        records = [make_tx(account, -100 * i, f"2024-02-{i:02d}") for i in range(1, 11)]
        results = []

        def run(reconciler):
            results.append(reconciler.reconcile(account, records, "feb.csv"))

        # Separate reconcilers share only the ledger, like separate processes
        threads = [
            threading.Thread(target=run, args=(ImportReconciler(store, adapter),))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.success for r in results)
        assert sum(r.new for r in results) == 10
        assert store.count_imported() == 10
        assert adapter.creations == 10

    def test_different_accounts_in_parallel(self, store, account, other_account):
        adapter = FakeYnabAdapter()
        reconciler = ImportReconciler(store, adapter)
        results = []

        def run(acc):
            records = [make_tx(acc, -100 * i, f"2024-03-{i:02d}") for i in range(1, 6)]
            results.append(reconciler.reconcile(acc, records, f"{acc.name}.csv"))

        threads = [threading.Thread(target=run, args=(a,)) for a in (account, other_account)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.state == ImportState.COMPLETED for r in results)
        assert store.count_imported(account.id) == 5
        assert store.count_imported(other_account.id) == 5

    def test_known_fingerprints_match_committed(self, reconciler, store, account, january):
        reconciler.reconcile(account, january, "jan.csv")

        assert store.lookup_known(fingerprint_of(r) for r in january) == {
            fingerprint_of(january[0]),
            fingerprint_of(january[2]),
        }
