"""
Migration 001: Initial ledger schema.

Budget/account mapping, key/value configuration and the dedup ground truth
(transaction_import, unique on amount + date_posted + account_id).
"""

import sqlite3

VERSION = 1
NAME = "initial_schema"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create budget, account, configuration and transaction_import tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS budget (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS account (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            budget_id INTEGER NOT NULL,
            uuid TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            FOREIGN KEY (budget_id) REFERENCES budget(id)
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS configuration (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transaction_import (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            amount INTEGER NOT NULL,  -- milliunits
            date_posted TEXT NOT NULL,  -- YYYY-MM-DD
            account_id INTEGER NOT NULL,
            FOREIGN KEY (account_id) REFERENCES account(id),
            UNIQUE (amount, date_posted, account_id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_account_budget ON account(budget_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transaction_import_account_date "
        "ON transaction_import(account_id, date_posted)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the initial tables."""
    conn.execute("DROP TABLE IF EXISTS transaction_import")
    conn.execute("DROP TABLE IF EXISTS configuration")
    conn.execute("DROP TABLE IF EXISTS account")
    conn.execute("DROP TABLE IF EXISTS budget")
