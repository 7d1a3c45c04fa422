"""Tests for state store."""

import threading
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from conftest import make_transaction

from ledger_hub.errors import PersistenceConflict
from ledger_hub.schemas.transaction import (
    ExternalAccount,
    TransactionCategory,
    TransactionType,
)
from ledger_hub.state_store import PushStatus, StateStore


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "transactions" in table_names
            assert "external_accounts" in table_names
            assert "sync_cursors" in table_names
            assert "category_account_ids" in table_names
            assert "llm_cache" in table_names
            assert "push_log" in table_names
            assert "reconciliation_reports" in table_names
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        """Opening an existing database twice keeps its data."""
        first = StateStore(temp_db)
        first.create_transaction(make_transaction())

        second = StateStore(temp_db)
        assert second.count_transactions() == 1


class TestTransactionOperations:
    """Tests for canonical transaction storage."""

    def test_create_and_get(self, store):
        tx_id = store.create_transaction(
            make_transaction(
                amount="-42.50",
                description="Office chairs",
                category=TransactionCategory.SUPPLIES,
                metadata={"vendor": "Staples"},
            )
        )

        stored = store.get_transaction(tx_id)
        assert stored is not None
        assert stored.id == tx_id
        assert stored.amount == Decimal("-42.50")
        assert stored.category == TransactionCategory.SUPPLIES
        assert stored.type == TransactionType.EXPENSE
        assert stored.metadata == {"vendor": "Staples"}
        assert stored.created_at is not None

    def test_duplicate_natural_key_conflicts(self, store):
        """Same (external_id, external_source) twice raises PersistenceConflict."""
        store.create_transaction(make_transaction(external_id="abc"))

        with pytest.raises(PersistenceConflict) as exc_info:
            store.create_transaction(make_transaction(external_id="abc"))

        assert exc_info.value.external_id == "abc"
        assert exc_info.value.external_source == "mercury"
        assert store.count_transactions() == 1

    def test_same_id_on_other_platform_allowed(self, store):
        store.create_transaction(make_transaction(external_id="abc", external_source="mercury"))
        store.create_transaction(make_transaction(external_id="abc", external_source="doorloop"))

        assert store.count_transactions() == 2

    def test_manual_rows_exempt_from_uniqueness(self, store):
        for _ in range(2):
            store.create_transaction(
                make_transaction(external_id="same", external_source="manual")
            )

        assert store.count_transactions("manual") == 2

    def test_get_by_external_id(self, store):
        store.create_transaction(make_transaction(external_id="x-1", description="Found me"))

        found = store.get_transaction_by_external_id("x-1", "mercury")
        assert found is not None
        assert found.description == "Found me"
        assert store.get_transaction_by_external_id("x-1", "wave") is None

    def test_date_range_is_inclusive(self, store):
        for day, ext in [(1, "a"), (15, "b"), (31, "c")]:
            store.create_transaction(make_transaction(external_id=ext, tx_date=date(2024, 1, day)))
        store.create_transaction(make_transaction(external_id="d", tx_date=date(2024, 2, 1)))

        rows = store.get_transactions_by_date_range(date(2024, 1, 1), date(2024, 1, 31))

        assert [tx.external_id for tx in rows] == ["a", "b", "c"]

    def test_date_range_filters(self, store):
        store.create_transaction(make_transaction(external_id="a", property_id="p1"))
        store.create_transaction(make_transaction(external_id="b", property_id="p2"))
        store.create_transaction(make_transaction(external_id="c", external_source="wave"))
        start, end = date(2024, 1, 1), date(2024, 1, 31)

        assert len(store.get_transactions_by_date_range(start, end, property_id="p1")) == 1
        assert len(store.get_transactions_by_date_range(start, end, exclude_source="wave")) == 2
        assert len(store.get_transactions_by_date_range(start, end, source="wave")) == 1

    def test_update_classification_keeps_identity(self, store):
        tx_id = store.create_transaction(make_transaction(external_id="keep"))

        updated = store.update_transaction_classification(
            tx_id, TransactionCategory.INSURANCE, TransactionType.EXPENSE, True, 0.9
        )

        stored = store.get_transaction(tx_id)
        assert updated is True
        assert stored.category == TransactionCategory.INSURANCE
        assert stored.ai_categorized is True
        assert stored.ai_confidence == pytest.approx(0.9)
        assert stored.natural_key == ("keep", "mercury")

    def test_update_missing_transaction(self, store):
        assert not store.update_transaction_classification(
            999, TransactionCategory.RENT, TransactionType.INCOME, False, 0.0
        )

    def test_concurrent_inserts_store_one_row(self, store):
        """Racing workers inserting the same record produce exactly one row."""
        conflicts = []

        def insert():
            try:
                store.create_transaction(make_transaction(external_id="race"))
            except PersistenceConflict:
                conflicts.append(1)

        threads = [threading.Thread(target=insert) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.count_transactions() == 1
        assert len(conflicts) == 4


class TestAccountsAndCursors:
    """Tests for external accounts and sync cursors."""

    def test_upsert_account(self, store):
        account = ExternalAccount("mercury", "acc-1", "Checking", "checking", Decimal("10"))
        store.upsert_account(account)
        account.balance = Decimal("25.50")
        account.name = "Operating"
        store.upsert_account(account)

        accounts = store.get_accounts("mercury")
        assert len(accounts) == 1
        assert accounts[0].name == "Operating"
        assert accounts[0].balance == Decimal("25.50")
        assert store.get_accounts("wave") == []

    def test_cursor_none_before_first_sync(self, store):
        assert store.get_last_sync("mercury", "acc-1") is None

    def test_cursor_only_moves_forward(self, store):
        later = datetime(2024, 1, 10, tzinfo=timezone.utc)
        earlier = datetime(2024, 1, 5, tzinfo=timezone.utc)

        store.advance_sync_cursor("mercury", "acc-1", later)
        result = store.advance_sync_cursor("mercury", "acc-1", earlier)

        assert result == later
        assert store.get_last_sync("mercury", "acc-1") == later

    def test_cursors_are_per_account(self, store):
        store.advance_sync_cursor("mercury", "acc-1", datetime(2024, 1, 10, tzinfo=timezone.utc))

        assert store.get_last_sync("mercury", "acc-2") is None
        assert store.get_last_sync("doorloop", "acc-1") is None


class TestMappingStorage:
    """Tests for the MappingStore side of the state store."""

    def test_upsert_ledger_account_id(self, store):
        store.upsert_ledger_account_id("rent", "wave", "acct-1")
        store.upsert_ledger_account_id("rent", "wave", "acct-2")

        assert store.get_ledger_account_id("rent", "wave") == "acct-2"

    def test_platform_entries_do_not_overwrite_each_other(self, store):
        store.upsert_ledger_account_id("rent", "wave", "w-1")
        store.upsert_ledger_account_id("rent", "doorloop", "d-1")

        assert store.get_ledger_account_ids() == {"rent": {"wave": "w-1", "doorloop": "d-1"}}

    def test_native_category_rules(self, store):
        store.save_native_category_rule("doorloop", "hoa dues", "other", 0.8)
        store.save_native_category_rule("doorloop", "hoa dues", "taxes", 0.9)

        assert store.get_native_category_rules() == {("doorloop", "hoa dues"): "taxes"}


class TestPushLog:
    """Tests for push log idempotency records."""

    def test_success_marks_pushed(self, store):
        store.record_push_success("lh:abc", 1, "wave-tx-1")

        record = store.get_push_record("lh:abc")
        assert store.is_pushed("lh:abc")
        assert record.status == PushStatus.PUSHED.value
        assert record.ledger_transaction_id == "wave-tx-1"

    def test_failure_is_not_pushed(self, store):
        store.record_push_failure("lh:abc", 1, "boom")

        assert not store.is_pushed("lh:abc")
        assert store.get_push_record("lh:abc").error_message == "boom"

    def test_failure_after_success_keeps_pushed(self, store):
        store.record_push_success("lh:abc", 1, "wave-tx-1")
        store.record_push_failure("lh:abc", 1, "forced retry failed")

        record = store.get_push_record("lh:abc")
        assert record.status == PushStatus.PUSHED.value
        assert record.attempts == 2

    def test_stats(self, store):
        store.create_transaction(make_transaction(external_id="a"))
        store.create_transaction(
            make_transaction(external_id="b", category=TransactionCategory.RENT, amount="900")
        )
        store.record_push_success("lh:a", 1, "w-1")

        stats = store.get_stats()
        assert stats["transactions_total"] == 2
        assert stats["transactions_by_source"] == {"mercury": 2}
        assert stats["uncategorized"] == 1
        assert stats["pushed"] == 1


class TestReconciliationReports:
    def test_save_and_load_latest(self, store):
        store.save_reconciliation_report(date(2024, 1, 1), date(2024, 1, 31), {"n": 1})
        report_id = store.save_reconciliation_report(
            date(2024, 2, 1), date(2024, 2, 29), {"n": 2}
        )

        latest = store.get_latest_reconciliation_report()
        assert latest["id"] == report_id
        assert latest["period_start"] == "2024-02-01"
        assert latest["report"] == {"n": 2}

    def test_no_reports(self, store):
        assert store.get_latest_reconciliation_report() is None
