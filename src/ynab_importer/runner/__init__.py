"""
CLI runner module.

Provides commands:
- import: Reconcile one export file and push new transactions to YNAB
- status: Ledger statistics
- batches: Import audit log
- undo: Forget an import batch locally
- accounts: Known budget/account mappings
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
