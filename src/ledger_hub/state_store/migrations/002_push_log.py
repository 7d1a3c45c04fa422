"""
Migration 002: Add push_log table.

Records every push to the primary ledger under its idempotency key, so that
overlapping push windows do not resubmit transactions already accepted by
the ledger.
"""

import sqlite3

VERSION = 2
NAME = "push_log"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create push_log table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS push_log (
            push_key TEXT PRIMARY KEY,
            transaction_id INTEGER,
            ledger_transaction_id TEXT,
            status TEXT NOT NULL,
            error_message TEXT,
            attempts INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            pushed_at TEXT
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_push_log_status ON push_log(status)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_push_log_transaction ON push_log(transaction_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove push_log table."""
    conn.execute("DROP TABLE IF EXISTS push_log")
