"""Tests for state store schema migrations."""

import sqlite3

import pytest

from ledger_hub.state_store import StateStore
from ledger_hub.state_store.migrations import MigrationRunner, get_all_migrations


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {row[0] for row in rows}


class TestMigrationDiscovery:
    def test_migrations_are_ordered(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)
        assert versions[:3] == [1, 2, 3]

    def test_labels(self):
        labels = [m.label for m in get_all_migrations()]
        assert "001_llm_cache" in labels
        assert "002_push_log" in labels
        assert "003_reconciliation_reports" in labels


class TestMigrationRunner:
    @pytest.fixture
    def conn(self, temp_db):
        StateStore(temp_db, run_migrations=False)
        conn = sqlite3.connect(str(temp_db))
        yield conn
        conn.close()

    def test_run_pending_applies_all(self, conn):
        runner = MigrationRunner(conn)

        applied = runner.run_pending()

        assert applied == [m.version for m in get_all_migrations()]
        assert {"llm_cache", "push_log", "reconciliation_reports"} <= _tables(conn)

    def test_run_pending_twice_is_noop(self, conn):
        runner = MigrationRunner(conn)
        runner.run_pending()

        assert runner.run_pending() == []
        assert runner.pending() == []

    def test_migrate_down_and_up(self, conn):
        runner = MigrationRunner(conn)
        runner.run_pending()

        runner.migrate_to(1)
        assert runner.current_version() == 1
        assert "push_log" not in _tables(conn)
        assert "llm_cache" in _tables(conn)

        runner.migrate_to(3)
        assert runner.current_version() == 3
        assert "push_log" in _tables(conn)
