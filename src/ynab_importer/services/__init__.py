"""Import services: remote sync adapter, reconciliation engine, file import, setup."""

from ynab_importer.services.file_import import AccountResolutionError, FileImportService
from ynab_importer.services.reconciliation import ImportReconciler, ImportResult, ImportState
from ynab_importer.services.remote_sync import (
    AdapterError,
    AdapterErrorKind,
    RemoteSyncAdapter,
    SubmitResult,
    YnabSyncAdapter,
)
from ynab_importer.services.setup import SetupError, SetupResult, run_setup

__all__ = [
    "AccountResolutionError",
    "AdapterError",
    "AdapterErrorKind",
    "FileImportService",
    "ImportReconciler",
    "ImportResult",
    "ImportState",
    "RemoteSyncAdapter",
    "SetupError",
    "SetupResult",
    "SubmitResult",
    "YnabSyncAdapter",
    "run_setup",
]
