"""
State Store (SQLite-based).

Local ledger for:
- Budget/account mappings and configuration
- Imported transactions (dedup ground truth, keyed by fingerprint)
- Import batches (append-only audit log)

Enforces uniqueness on (amount, date_posted, account_id).
"""

from .sqlite_store import (
    CONFIG_ACCESS_TOKEN,
    CONFIG_TRANSACTION_DIR,
    CONFIG_USER_ID,
    AccountRecord,
    BatchNotFoundError,
    BudgetRecord,
    ImportBatchRecord,
    ImportedTransactionRecord,
    StateStore,
    StoreConflictError,
    StoreError,
    StoreUnavailableError,
)

__all__ = [
    "CONFIG_ACCESS_TOKEN",
    "CONFIG_TRANSACTION_DIR",
    "CONFIG_USER_ID",
    "AccountRecord",
    "BatchNotFoundError",
    "BudgetRecord",
    "ImportBatchRecord",
    "ImportedTransactionRecord",
    "StateStore",
    "StoreConflictError",
    "StoreError",
    "StoreUnavailableError",
]
