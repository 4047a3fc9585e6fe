"""
Bank export → Local dedup ledger → YNAB Import

Ingests bank-exported transaction files, deduplicates them against a local
SQLite ledger and submits genuinely new transactions to YNAB exactly once,
even across restarts and partial failures.
"""

__version__ = "0.1.0"
