"""
SQLite-based local ledger implementation.

Tables:
- budget: YNAB budgets known locally
- account: YNAB accounts, each owned by one budget
- configuration: key/value settings written by setup tooling
- transaction_import: every accepted transaction (dedup ground truth)
- import_log: append-only audit row per processed file

The store is the only writer of transaction_import and import_log rows.
All mutation goes through commit_batch / undo_batch, both atomic.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from ..schemas.fingerprint import Fingerprint, fingerprint, fingerprint_of
from ..schemas.transaction import NormalizedTransaction

logger = logging.getLogger(__name__)

# Configuration keys (written by setup, read at startup)
CONFIG_USER_ID = "user_id"
CONFIG_ACCESS_TOKEN = "access_token"
CONFIG_TRANSACTION_DIR = "transaction_dir"


class StoreError(Exception):
    """Base exception for ledger store errors."""

    pass


class StoreUnavailableError(StoreError):
    """The underlying database could not be read or written.

    The current file's processing must be aborted and retried later.
    """

    pass


class StoreConflictError(StoreError):
    """A fingerprint in the batch was committed concurrently by another run."""

    def __init__(self, conflicting: set[Fingerprint]):
        self.conflicting = conflicting
        listed = ", ".join(str(fp) for fp in sorted(conflicting))
        super().__init__(f"Transactions already imported by a concurrent run: {listed}")


class BatchNotFoundError(StoreError):
    """No import batch with the given id."""

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(f"Import batch {batch_id} does not exist")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class BudgetRecord:
    """A YNAB budget known locally."""

    id: int
    uuid: str
    name: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BudgetRecord":
        return cls(id=row["id"], uuid=row["uuid"], name=row["name"])


@dataclass
class AccountRecord:
    """A YNAB account and its local surrogate key."""

    id: int
    budget_id: int
    uuid: str
    name: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AccountRecord":
        return cls(
            id=row["id"],
            budget_id=row["budget_id"],
            uuid=row["uuid"],
            name=row["name"],
        )


@dataclass
class ImportedTransactionRecord:
    """A transaction accepted by a previous import."""

    id: int
    amount: int
    date_posted: date
    account_id: int
    remote_transaction_id: str | None
    import_batch_id: int | None

    @property
    def fingerprint(self) -> Fingerprint:
        return fingerprint(self.amount, self.date_posted, self.account_id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportedTransactionRecord":
        return cls(
            id=row["id"],
            amount=row["amount"],
            date_posted=date.fromisoformat(row["date_posted"]),
            account_id=row["account_id"],
            remote_transaction_id=row["remote_transaction_id"],
            import_batch_id=row["import_batch_id"],
        )


@dataclass
class ImportBatchRecord:
    """Audit record of one processed file."""

    id: int
    account_id: int
    file_name: str
    transaction_ids: list[str]  # remote ids, submission order
    insert_datetime: str  # ISO timestamp

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportBatchRecord":
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            file_name=row["file_name"],
            transaction_ids=json.loads(row["transaction_ids"]) if row["transaction_ids"] else [],
            insert_datetime=row["insert_datetime"],
        )


class StateStore:
    """
    SQLite-based local ledger.

    Provides persistent tracking of:
    - Budget and account mappings
    - Configuration values
    - Imported transactions (keyed by fingerprint)
    - Import batches (audit log)

    Every public method opens its own connection; no handle is cached
    between calls.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the ledger store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open ledger at {self.db_path}: {e}") from e
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        Integrity errors propagate unchanged for the caller to interpret;
        any other database error becomes StoreUnavailableError.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.DatabaseError as e:
            conn.rollback()
            raise StoreUnavailableError(f"Ledger database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        except sqlite3.DatabaseError as e:
            raise StoreUnavailableError(f"Failed to migrate ledger: {e}") from e
        finally:
            conn.close()

    # Configuration methods

    def get_config(self, key: str, default: str | None = None) -> str | None:
        """Get a configuration value."""
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM configuration WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else default

    def set_config(self, key: str, value: str) -> None:
        """Insert or replace a configuration value."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO configuration (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
                (key, value),
            )

    # Budget and account methods

    def get_or_create_budget(self, uuid: str, name: str) -> int:
        """Get the row id for a budget, creating it if needed.

        An existing budget is renamed to follow the remote name.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO budget (uuid, name) VALUES (?, ?)
                ON CONFLICT(uuid) DO UPDATE SET name = excluded.name
            """,
                (uuid, name),
            )
            row = conn.execute("SELECT id FROM budget WHERE uuid = ?", (uuid,)).fetchone()
            return row["id"]

    def get_budget(self, budget_id: int) -> BudgetRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM budget WHERE id = ?", (budget_id,)).fetchone()
            return BudgetRecord.from_row(row) if row else None

    def get_budget_by_name(self, name: str) -> BudgetRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM budget WHERE name = ?", (name,)).fetchone()
            return BudgetRecord.from_row(row) if row else None

    def upsert_accounts(self, budget_id: int, accounts: Iterable[tuple[str, str]]) -> list[int]:
        """
        Insert accounts for a budget, renaming ones that already exist.

        Args:
            budget_id: Owning budget row id
            accounts: (uuid, name) pairs

        Returns:
            Account row ids, in input order
        """
        ids = []
        with self._transaction() as conn:
            for uuid, name in accounts:
                conn.execute(
                    """
                    INSERT INTO account (budget_id, uuid, name) VALUES (?, ?, ?)
                    ON CONFLICT(uuid) DO UPDATE SET name = excluded.name
                """,
                    (budget_id, uuid, name),
                )
                row = conn.execute("SELECT id FROM account WHERE uuid = ?", (uuid,)).fetchone()
                ids.append(row["id"])
        return ids

    def get_account(self, account_id: int) -> AccountRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM account WHERE id = ?", (account_id,)).fetchone()
            return AccountRecord.from_row(row) if row else None

    def get_account_by_uuid(self, uuid: str) -> AccountRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM account WHERE uuid = ?", (uuid,)).fetchone()
            return AccountRecord.from_row(row) if row else None

    def get_account_by_name(self, budget_id: int, name: str) -> AccountRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM account WHERE budget_id = ? AND name = ?", (budget_id, name)
            ).fetchone()
            return AccountRecord.from_row(row) if row else None

    def list_accounts(self) -> list[tuple[BudgetRecord, AccountRecord]]:
        """All known accounts with their budgets, ordered by budget then account name."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT b.id AS b_id, b.uuid AS b_uuid, b.name AS b_name,
                       a.id, a.budget_id, a.uuid, a.name
                FROM account a JOIN budget b ON b.id = a.budget_id
                ORDER BY b.name, a.name
            """
            ).fetchall()
            return [
                (
                    BudgetRecord(id=row["b_id"], uuid=row["b_uuid"], name=row["b_name"]),
                    AccountRecord.from_row(row),
                )
                for row in rows
            ]

    def get_budget_uuid_for_account(self, account_uuid: str) -> str | None:
        """Remote budget id owning the given remote account id."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT b.uuid FROM account a JOIN budget b ON b.id = a.budget_id
                WHERE a.uuid = ?
            """,
                (account_uuid,),
            ).fetchone()
            return row["uuid"] if row else None

    # Imported transaction methods

    def lookup_known(self, fingerprints: Iterable[Fingerprint]) -> set[Fingerprint]:
        """
        Return the subset of fingerprints that are already imported.

        Issues a single SELECT bounded by the accounts and date range of
        the requested fingerprints, then intersects in memory.
        """
        wanted = set(fingerprints)
        if not wanted:
            return set()

        account_ids = sorted({fp.account_id for fp in wanted})
        start = min(fp.date_posted for fp in wanted).isoformat()
        end = max(fp.date_posted for fp in wanted).isoformat()
        placeholders = ", ".join("?" for _ in account_ids)

        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT amount, date_posted, account_id FROM transaction_import
                WHERE account_id IN ({placeholders}) AND date_posted BETWEEN ? AND ?
            """,
                (*account_ids, start, end),
            ).fetchall()

        stored = {
            fingerprint(row["amount"], date.fromisoformat(row["date_posted"]), row["account_id"])
            for row in rows
        }
        return wanted & stored

    def get_imported_transaction(self, fp: Fingerprint) -> ImportedTransactionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM transaction_import
                WHERE amount = ? AND date_posted = ? AND account_id = ?
            """,
                (fp.amount, fp.date_posted.isoformat(), fp.account_id),
            ).fetchone()
            return ImportedTransactionRecord.from_row(row) if row else None

    def count_imported(self, account_id: int | None = None) -> int:
        with self._transaction() as conn:
            if account_id is None:
                row = conn.execute("SELECT COUNT(*) FROM transaction_import").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM transaction_import WHERE account_id = ?", (account_id,)
                ).fetchone()
            return row[0]

    def commit_batch(
        self,
        account_id: int,
        accepted: Sequence[tuple[NormalizedTransaction, str]],
        source_file_name: str,
    ) -> int:
        """
        Atomically record a successfully submitted batch.

        Inserts one import_log row and one transaction_import row per
        accepted record, or nothing at all.

        Args:
            account_id: Local account surrogate key
            accepted: (record, remote transaction id) pairs, submission order
            source_file_name: Name of the processed export file

        Returns:
            The new import batch id

        Raises:
            ValueError: If a record belongs to another account or the
                batch repeats a fingerprint
            StoreConflictError: If any fingerprint is already imported
            StoreUnavailableError: On any other database failure
        """
        fingerprints = []
        for record, _ in accepted:
            if record.account_id != account_id:
                raise ValueError(
                    f"Record for account {record.account_id} in batch for account {account_id}"
                )
            fingerprints.append(fingerprint_of(record))
        if len(set(fingerprints)) != len(fingerprints):
            raise ValueError("Batch contains repeated fingerprints")

        remote_ids = [remote_id for _, remote_id in accepted]

        try:
            with self._transaction() as conn:
                conn.execute("BEGIN IMMEDIATE")
                batch_id = self._append_import_log(conn, account_id, source_file_name, remote_ids)
                for record, remote_id in accepted:
                    self._insert_imported_transaction(conn, record, remote_id, batch_id)
        except sqlite3.IntegrityError as e:
            conflicting = self.lookup_known(fingerprints)
            if not conflicting:
                # Not a fingerprint clash (e.g. unknown account)
                raise StoreError(f"Ledger rejected batch: {e}") from e
            logger.warning(
                "Commit of %s conflicted on %d transaction(s)", source_file_name, len(conflicting)
            )
            raise StoreConflictError(conflicting) from e

        logger.info(
            "Committed import batch %d: %d transaction(s) from %s",
            batch_id,
            len(accepted),
            source_file_name,
        )
        return batch_id

    def _append_import_log(
        self,
        conn: sqlite3.Connection,
        account_id: int,
        file_name: str,
        remote_ids: list[str],
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO import_log (account_id, file_name, transaction_ids, insert_datetime)
            VALUES (?, ?, ?, ?)
        """,
            (account_id, file_name, json.dumps(remote_ids), _utc_now()),
        )
        return cursor.lastrowid or 0

    def _insert_imported_transaction(
        self,
        conn: sqlite3.Connection,
        record: NormalizedTransaction,
        remote_id: str,
        batch_id: int,
    ) -> None:
        conn.execute(
            """
            INSERT INTO transaction_import
            (amount, date_posted, account_id, remote_transaction_id, import_batch_id)
            VALUES (?, ?, ?, ?, ?)
        """,
            (record.amount, record.date_posted.isoformat(), record.account_id, remote_id, batch_id),
        )

    def undo_batch(self, batch_id: int) -> int:
        """
        Remove an import batch and the transactions it recorded.

        Only the local ledger is touched; the remote transactions stay.

        Returns:
            Number of transaction rows removed

        Raises:
            BatchNotFoundError: If the batch does not exist
        """
        with self._transaction() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT id FROM import_log WHERE id = ?", (batch_id,)).fetchone()
            if row is None:
                raise BatchNotFoundError(batch_id)
            cursor = conn.execute(
                "DELETE FROM transaction_import WHERE import_batch_id = ?", (batch_id,)
            )
            removed = cursor.rowcount
            conn.execute("DELETE FROM import_log WHERE id = ?", (batch_id,))

        logger.info("Undid import batch %d (%d transaction(s) removed locally)", batch_id, removed)
        return removed

    # Import log methods

    def get_batch(self, batch_id: int) -> ImportBatchRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM import_log WHERE id = ?", (batch_id,)).fetchone()
            return ImportBatchRecord.from_row(row) if row else None

    def list_batches(self, account_id: int | None = None, limit: int = 50) -> list[ImportBatchRecord]:
        """Most recent import batches first."""
        with self._transaction() as conn:
            if account_id is None:
                rows = conn.execute(
                    "SELECT * FROM import_log ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM import_log WHERE account_id = ? ORDER BY id DESC LIMIT ?",
                    (account_id, limit),
                ).fetchall()
            return [ImportBatchRecord.from_row(row) for row in rows]

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get ledger statistics."""
        with self._transaction() as conn:
            stats = {}

            stats["budgets"] = conn.execute("SELECT COUNT(*) FROM budget").fetchone()[0]
            stats["accounts"] = conn.execute("SELECT COUNT(*) FROM account").fetchone()[0]
            stats["transactions_imported"] = conn.execute(
                "SELECT COUNT(*) FROM transaction_import"
            ).fetchone()[0]
            stats["import_batches"] = conn.execute("SELECT COUNT(*) FROM import_log").fetchone()[0]
            stats["last_import"] = conn.execute(
                "SELECT MAX(insert_datetime) FROM import_log"
            ).fetchone()[0]

            return stats
