"""
Migration 003: Add reconciliation_reports table.

Stores each generated report as JSON for later display.
"""

import sqlite3

VERSION = 3
NAME = "reconciliation_reports"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create reconciliation_reports table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reconciliation_reports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            period_start TEXT NOT NULL,
            period_end TEXT NOT NULL,
            report_json TEXT NOT NULL,
            generated_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_reports_period "
        "ON reconciliation_reports(period_start, period_end)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove reconciliation_reports table."""
    conn.execute("DROP TABLE IF EXISTS reconciliation_reports")
