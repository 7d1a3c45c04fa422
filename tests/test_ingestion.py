"""Tests for the ingestion pipeline."""

import sqlite3
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import SAMPLE_MERCURY_TRANSACTIONS, make_native

from ledger_hub.ai_classifier import AIClassifier, Classification
from ledger_hub.categorization import CategoryResolver
from ledger_hub.config import LLMConfig
from ledger_hub.connectors import CredentialCheck, FetchResult
from ledger_hub.errors import CredentialError, MalformedResponseError, TransientNetworkError
from ledger_hub.schemas.native import MercuryTransactionRecord
from ledger_hub.schemas.transaction import (
    ExternalAccount,
    TransactionCategory,
    TransactionType,
)
from ledger_hub.services import IngestionPipeline

CHECKING = ExternalAccount(platform="mercury", external_id="acc-checking-1", name="Checking")
SAVINGS = ExternalAccount(platform="mercury", external_id="acc-savings-1", name="Savings")


def _mercury_natives():
    return [
        MercuryTransactionRecord.from_api_response(item).to_native()
        for item in SAMPLE_MERCURY_TRANSACTIONS["transactions"]
    ]


def _connector(fetched, accounts=(CHECKING,), check=None):
    """Mock connector serving ``fetched[account_id]`` for each account."""
    connector = MagicMock()
    connector.validate_credentials.return_value = check or CredentialCheck(True, "ok")
    connector.list_accounts.return_value = list(accounts)

    def fetch(account, since=None):
        value = fetched[account.external_id]
        if isinstance(value, Exception):
            raise value
        return value

    connector.fetch_transactions.side_effect = fetch
    return connector


@pytest.fixture
def classifier():
    classifier = MagicMock()
    classifier.classify.return_value = Classification(
        category=TransactionCategory.INSURANCE,
        type=TransactionType.EXPENSE,
        confidence=0.9,
        reason="premium payment",
    )
    return classifier


@pytest.fixture
def ai_resolver(mapping, classifier):
    return CategoryResolver(mapping, classifier)


class TestSync:
    """Test syncing one platform."""

    def test_three_transaction_scenario(self, store, ai_resolver, classifier):
        """Mapping, keyword and AI each categorize one transaction."""
        connector = _connector({"acc-checking-1": FetchResult(_mercury_natives())})
        pipeline = IngestionPipeline(store, ai_resolver, lambda platform, cred: connector)

        result = pipeline.sync("mercury")

        assert result.success
        assert result.imported == 3
        assert result.categorized == 3
        assert result.mapped == 1
        assert result.accounts_processed == 1

        utilities = store.get_transaction_by_external_id("txn-1", "mercury")
        plumbing = store.get_transaction_by_external_id("txn-2", "mercury")
        premium = store.get_transaction_by_external_id("txn-3", "mercury")
        assert utilities.category == TransactionCategory.UTILITIES
        assert not utilities.ai_categorized
        assert plumbing.category == TransactionCategory.MAINTENANCE
        assert premium.category == TransactionCategory.INSURANCE
        assert premium.ai_categorized
        assert premium.ai_confidence == pytest.approx(0.9)
        assert premium.metadata["vendor"] == "Acme Mutual"
        assert classifier.classify.call_count == 1
        connector.close.assert_called_once()

    def test_second_sync_is_noop(self, store, resolver):
        connector = _connector({"acc-checking-1": FetchResult(_mercury_natives())})
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        pipeline.sync("mercury")
        second = pipeline.sync("mercury")

        assert second.imported == 0
        assert second.skipped == 3
        assert store.count_transactions("mercury") == 3

    def test_cursor_advances_to_newest(self, store, resolver):
        connector = _connector({"acc-checking-1": FetchResult(_mercury_natives())})
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        pipeline.sync("mercury")
        pipeline.sync("mercury")

        newest = datetime(2024, 1, 7, 10, 0, tzinfo=timezone.utc)
        assert store.get_last_sync("mercury", "acc-checking-1") == newest
        second_call = connector.fetch_transactions.call_args_list[1]
        assert second_call.args[1] == newest

    def test_cursor_not_advanced_after_store_failure(self, store, resolver, monkeypatch):
        connector = _connector({"acc-checking-1": FetchResult(_mercury_natives())})
        create = store.create_transaction

        def flaky_create(transaction):
            if transaction.external_id == "txn-2":
                raise sqlite3.OperationalError("database is locked")
            return create(transaction)

        monkeypatch.setattr(store, "create_transaction", flaky_create)
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        result = pipeline.sync("mercury")

        assert result.imported == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert store.get_last_sync("mercury", "acc-checking-1") is None

    def test_malformed_records_are_counted(self, store, resolver):
        fetched = FetchResult(
            [make_native("n-1", description="January rent", amount="1200")],
            [MalformedResponseError("missing field 'id'", "mercury")],
        )
        connector = _connector({"acc-checking-1": fetched})
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        result = pipeline.sync("mercury")

        assert result.imported == 1
        assert result.failed == 1
        assert not result.success
        assert store.get_last_sync("mercury", "acc-checking-1") is not None

    def test_account_failure_is_isolated(self, store, resolver):
        connector = _connector(
            {
                "acc-checking-1": FetchResult(_mercury_natives()),
                "acc-savings-1": TransientNetworkError("timed out", "mercury"),
            },
            accounts=(CHECKING, SAVINGS),
        )
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        result = pipeline.sync("mercury")

        assert result.imported == 3
        assert result.accounts_processed == 1
        assert len(result.errors) == 1
        assert "acc-savings-1" in result.errors[0]
        assert len(store.get_accounts("mercury")) == 2

    def test_unexpected_model_reply_keeps_other(self, store, mapping):
        """A model reply without a message object degrades instead of failing the sync."""
        ollama = httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"message": None}))
        )
        classifier = AIClassifier(
            LLMConfig(enabled=True, model_fast="fast", model_fallback="", timeout_seconds=5),
            client=ollama,
        )
        connector = _connector(
            {"acc-checking-1": FetchResult([make_native("n-1", description="Wire 88213")])}
        )
        pipeline = IngestionPipeline(
            store, CategoryResolver(mapping, classifier), lambda platform, cred: connector
        )

        result = pipeline.sync("mercury")

        assert result.imported == 1
        assert result.categorized == 0
        stored = store.get_transaction_by_external_id("n-1", "mercury")
        assert stored.category == TransactionCategory.OTHER
        assert not stored.ai_categorized

    def test_rejected_credential_aborts(self, store, resolver):
        connector = _connector({}, check=CredentialCheck(False, "token revoked"))
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        with pytest.raises(CredentialError):
            pipeline.sync("mercury")

        connector.list_accounts.assert_not_called()
        connector.close.assert_called_once()

    def test_credential_error_during_fetch_aborts(self, store, resolver):
        connector = _connector({"acc-checking-1": CredentialError("expired", "mercury")})
        pipeline = IngestionPipeline(store, resolver, lambda platform, cred: connector)

        with pytest.raises(CredentialError):
            pipeline.sync("mercury")

    def test_credential_is_passed_to_factory(self, store, resolver):
        factory = MagicMock(return_value=_connector({"acc-checking-1": FetchResult()}))
        IngestionPipeline(store, resolver, factory).sync("mercury", "other-key")
        factory.assert_called_once_with("mercury", "other-key")


class TestSyncAll:
    def test_one_platform_failing_does_not_stop_others(self, store, resolver):
        connectors = {
            "mercury": _connector({"acc-checking-1": FetchResult(_mercury_natives())}),
            "doorloop": _connector({}, check=CredentialCheck(False, "bad key")),
        }
        pipeline = IngestionPipeline(
            store, resolver, lambda platform, cred: connectors[platform]
        )

        results = pipeline.sync_all(["mercury", "doorloop"])

        assert list(results) == ["mercury", "doorloop"]
        assert results["mercury"].imported == 3
        assert not results["doorloop"].success
        assert "bad key" in results["doorloop"].errors[0]

    def test_empty(self, store, resolver):
        pipeline = IngestionPipeline(store, resolver, MagicMock())
        assert pipeline.sync_all([]) == {}


class TestManualTransactions:
    def test_manual_duplicates_are_allowed(self, store, resolver):
        pipeline = IngestionPipeline(store, resolver, MagicMock())

        first = pipeline.record_manual_transaction(
            Decimal("-75"), date(2024, 1, 9), "Furnace repair", created_by="owner"
        )
        second = pipeline.record_manual_transaction(
            Decimal("-75"), date(2024, 1, 9), "Furnace repair", created_by="owner"
        )

        assert first != second
        tx = store.get_transaction(first)
        assert tx.external_source == "manual"
        assert tx.external_id is None
        assert tx.category == TransactionCategory.MAINTENANCE
        assert tx.created_by == "owner"

    def test_explicit_category(self, store, resolver):
        pipeline = IngestionPipeline(store, resolver, MagicMock())

        tx_id = pipeline.record_manual_transaction(
            Decimal("1200"), date(2024, 1, 1), "Unit 4", category=TransactionCategory.RENT
        )

        tx = store.get_transaction(tx_id)
        assert tx.category == TransactionCategory.RENT
        assert tx.type == TransactionType.INCOME
