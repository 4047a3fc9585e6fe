"""
Migration 002: Add import_log audit table.

One row per processed file with the ordered remote transaction ids it
created. transaction_import rows gain the remote id and a link to the batch
that created them, so a batch can be undone locally.
"""

import sqlite3

VERSION = 2
NAME = "import_log"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create import_log and link transaction_import rows to it."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS import_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id INTEGER NOT NULL,
            file_name TEXT NOT NULL,
            transaction_ids TEXT NOT NULL,  -- JSON array, submission order
            insert_datetime TEXT NOT NULL,
            FOREIGN KEY (account_id) REFERENCES account(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_import_log_account ON import_log(account_id)"
    )

    columns = {row[1] for row in conn.execute("PRAGMA table_info(transaction_import)")}
    if "remote_transaction_id" not in columns:
        conn.execute("ALTER TABLE transaction_import ADD COLUMN remote_transaction_id TEXT")
    if "import_batch_id" not in columns:
        conn.execute(
            "ALTER TABLE transaction_import ADD COLUMN import_batch_id INTEGER"
        )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transaction_import_batch "
        "ON transaction_import(import_batch_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop import_log and the batch link columns."""
    conn.execute("DROP INDEX IF EXISTS idx_transaction_import_batch")
    conn.execute("ALTER TABLE transaction_import DROP COLUMN import_batch_id")
    conn.execute("ALTER TABLE transaction_import DROP COLUMN remote_transaction_id")
    conn.execute("DROP TABLE IF EXISTS import_log")
