"""Tests for the ReconciliationEngine.

These tests verify:
- Fuzzy pairing of canonical and platform transactions
- Unmatched records reported from both sides
- Signed-amount variances on matched pairs
- Duplicate detection inside one platform
- Partial reports when a platform fails
- Report persistence
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from conftest import make_native, make_transaction

from ledger_hub.connectors import CredentialCheck, FetchResult
from ledger_hub.errors import CredentialError, MalformedResponseError, TransientNetworkError
from ledger_hub.matching import TransactionMatcher
from ledger_hub.schemas.transaction import ExternalAccount
from ledger_hub.services import IngestionPipeline, ReconciliationEngine
from ledger_hub.services.reconciliation import CANONICAL, find_duplicates, month_period

JANUARY = (date(2024, 1, 1), date(2024, 1, 31))


def _connector(platform: str, natives: list) -> MagicMock:
    connector = MagicMock()
    connector.list_accounts.return_value = [
        ExternalAccount(platform=platform, external_id=f"{platform}-acct", name="Main")
    ]
    connector.fetch_transactions.return_value = FetchResult(list(natives))
    return connector


def _failing(error: Exception) -> MagicMock:
    connector = MagicMock()
    connector.list_accounts.side_effect = error
    return connector


@pytest.fixture
def seeded(store):
    """Canonical rent from the bank plus a manual cleaning charge."""
    store.create_transaction(
        make_transaction("100.00", date(2024, 1, 5), "Rent Jan", external_id="m-1")
    )
    store.create_transaction(
        make_transaction(
            "-50.00", date(2024, 1, 10), "Window cleaning",
            external_id=None, external_source="manual",
        )
    )
    return store


class TestMonthPeriod:
    def test_month_period(self) -> None:
        assert month_period(date(2024, 2, 14)) == (date(2024, 2, 1), date(2024, 2, 29))


class TestReconcile:
    def test_fuzzy_match_and_unmatched_canonical(self, seeded) -> None:
        """Rent pairs across a one-day shift; the $50 charge has no counterpart."""
        doorloop = _connector(
            "doorloop", [make_native("d-1", "100.00", date(2024, 1, 6), "RENT JANUARY")]
        )
        engine = ReconciliationEngine(seeded, lambda platform, cred: doorloop)

        report = engine.reconcile(JANUARY, platforms=["doorloop"])

        assert report.success
        assert report.totals[CANONICAL] == Decimal("50.00")
        assert report.totals["doorloop"] == Decimal("100.00")
        assert len(report.discrepancies) == 1
        missing = report.discrepancies[0]
        assert not missing.matched
        assert missing.amount == Decimal("-50.00")
        assert missing.side == CANONICAL
        assert missing.platform == "doorloop"
        doorloop.close.assert_called_once()

    def test_platform_record_missing_from_store(self, store) -> None:
        doorloop = _connector(
            "doorloop", [make_native("d-7", "75.00", date(2024, 1, 12), "Late fee unit 4")]
        )
        report = ReconciliationEngine(store, lambda p, c: doorloop).reconcile(
            JANUARY, platforms=["doorloop"]
        )

        assert [d.side for d in report.unmatched] == ["doorloop"]
        assert "d-7" in report.unmatched[0].note

    def test_signed_variance_on_matched_pair(self, store) -> None:
        store.create_transaction(
            make_transaction("-42.10", date(2024, 1, 3), "City Power", external_id="m-2")
        )
        doorloop = _connector(
            "doorloop", [make_native("d-2", "42.10", date(2024, 1, 3), "CITY POWER")]
        )

        report = ReconciliationEngine(store, lambda p, c: doorloop).reconcile(
            JANUARY, platforms=["doorloop"]
        )

        assert len(report.discrepancies) == 1
        variance = report.discrepancies[0]
        assert variance.matched
        assert "variance" in variance.note
        assert report.unmatched == []

    def test_stored_row_pairs_with_its_source_record(self, store) -> None:
        store.create_transaction(
            make_transaction("100", date(2024, 1, 5), "Rent", external_id="d-1",
                             external_source="doorloop")
        )
        doorloop = _connector("doorloop", [make_native("d-1", "100", date(2024, 1, 5), "Rent")])

        report = ReconciliationEngine(store, lambda p, c: doorloop).reconcile(
            JANUARY, platforms=["doorloop"]
        )

        assert report.discrepancies == []

    def test_source_pairing_ignores_description_drift(self, store) -> None:
        """A row pairs with the record it came from even when the text changed."""
        store.create_transaction(
            make_transaction("-75.00", date(2024, 1, 2), "Pending card auth", external_id="m-5")
        )
        mercury = _connector(
            "mercury", [make_native("m-5", "-80.00", date(2024, 1, 6), "HARDWARE DEPOT #12")]
        )

        report = ReconciliationEngine(store, lambda p, c: mercury).reconcile(
            JANUARY, platforms=["mercury"]
        )

        assert report.unmatched == []
        assert len(report.discrepancies) == 1
        assert report.discrepancies[0].matched
        assert "m-5" in report.discrepancies[0].note

    def test_ingested_records_reconcile_cleanly(self, store, resolver) -> None:
        """Records synced into the store are not reported as missing from it."""
        native = make_native("m-1", "-120.00", date(2024, 1, 5), "Emergency plumbing repair")
        mercury = _connector("mercury", [native])
        mercury.validate_credentials.return_value = CredentialCheck(True, "ok")

        synced = IngestionPipeline(store, resolver, lambda p, c: mercury).sync("mercury")
        report = ReconciliationEngine(store, lambda p, c: mercury).reconcile(
            JANUARY, platforms=["mercury"]
        )

        assert synced.imported == 1
        assert report.totals[CANONICAL] == report.totals["mercury"] == Decimal("-120.00")
        assert report.discrepancies == []

    def test_out_of_period_records_are_ignored(self, store) -> None:
        doorloop = _connector(
            "doorloop", [make_native("d-9", "10", date(2024, 2, 2), "February charge")]
        )
        report = ReconciliationEngine(store, lambda p, c: doorloop).reconcile(
            JANUARY, platforms=["doorloop"]
        )
        assert report.totals["doorloop"] == Decimal("0")
        assert report.discrepancies == []

    def test_duplicates(self, store) -> None:
        doorloop = _connector(
            "doorloop",
            [
                make_native("d-1", "95.00", date(2024, 1, 8), "Landscaping"),
                make_native("d-2", "95.00", date(2024, 1, 8), "LANDSCAPING"),
                make_native("d-3", "95.00", date(2024, 1, 9), "Landscaping"),
            ],
        )

        report = ReconciliationEngine(store, lambda p, c: doorloop).reconcile(
            JANUARY, platforms=["doorloop"]
        )

        assert len(report.duplicates) == 1
        assert report.duplicates[0].external_ids == ["d-1", "d-2"]

    def test_failed_platform_is_recorded(self, seeded) -> None:
        connectors = {
            "mercury": _failing(TransientNetworkError("timed out", "mercury")),
            "doorloop": _connector(
                "doorloop", [make_native("d-1", "100.00", date(2024, 1, 6), "RENT JANUARY")]
            ),
            "wave": _failing(CredentialError("revoked", "wave")),
        }
        engine = ReconciliationEngine(seeded, lambda platform, cred: connectors[platform])

        report = engine.reconcile(JANUARY)

        assert not report.success
        assert len(report.errors) == 2
        assert any(e.startswith("mercury:") for e in report.errors)
        assert "doorloop" in report.totals
        assert "mercury" not in report.totals
        connectors["mercury"].close.assert_called_once()

    def test_malformed_records_are_reported(self, store) -> None:
        connector = _connector("doorloop", [])
        connector.fetch_transactions.return_value.malformed.append(
            MalformedResponseError("missing field 'id'", "doorloop")
        )

        report = ReconciliationEngine(store, lambda p, c: connector).reconcile(
            JANUARY, platforms=["doorloop"]
        )

        assert len(report.errors) == 1
        assert report.errors[0].startswith("doorloop account doorloop-acct:")
        assert "missing field 'id'" in report.errors[0]

    def test_credentials_are_passed_to_factory(self, store) -> None:
        factory = MagicMock(return_value=_connector("wave", []))
        ReconciliationEngine(store, factory).reconcile(
            JANUARY, platforms=["wave"], credentials={"wave": "tok"}
        )
        factory.assert_called_once_with("wave", "tok")

    def test_custom_matcher_tolerance(self, seeded) -> None:
        doorloop = _connector(
            "doorloop", [make_native("d-1", "100.00", date(2024, 1, 6), "RENT JANUARY")]
        )
        engine = ReconciliationEngine(
            seeded, lambda p, c: doorloop, matcher=TransactionMatcher(date_tolerance_days=0)
        )

        report = engine.reconcile(JANUARY, platforms=["doorloop"])

        assert len(report.unmatched) == 3

    def test_report_is_saved(self, seeded) -> None:
        doorloop = _connector("doorloop", [])
        report = ReconciliationEngine(seeded, lambda p, c: doorloop).reconcile(
            JANUARY, platforms=["doorloop"]
        )

        saved = seeded.get_latest_reconciliation_report()
        assert saved["id"] == report.id
        assert saved["period_start"] == "2024-01-01"
        assert saved["report"]["totals"][CANONICAL] == "50.00"
        assert len(saved["report"]["discrepancies"]) == 2

    def test_save_disabled(self, store) -> None:
        report = ReconciliationEngine(store, lambda p, c: _connector("wave", [])).reconcile(
            JANUARY, platforms=["wave"], save=False
        )
        assert report.id is None
        assert store.get_latest_reconciliation_report() is None


class TestFindDuplicates:
    def test_no_duplicates(self) -> None:
        natives = [make_native("a", "1"), make_native("b", "2")]
        assert find_duplicates("mercury", natives) == []

    def test_group_to_dict(self) -> None:
        natives = [make_native("a", "1"), make_native("b", "1")]
        group = find_duplicates("mercury", natives)[0].to_dict()
        assert group["count"] == 2
        assert group["platform"] == "mercury"
