"""Tests for the transaction matching engine."""

from datetime import date
from decimal import Decimal

import pytest
from conftest import make_native, make_transaction

from ledger_hub.matching import TransactionMatcher, round_amount, token_overlap
from ledger_hub.matching.engine import tokenize


class TestTokenOverlap:
    def test_prefix_tokens_overlap_fully(self):
        assert token_overlap("Rent Jan", "RENT JANUARY") == pytest.approx(1.0)

    def test_partial(self):
        # {home, depot, order} vs {home, depot}: 2 shared of 3
        assert token_overlap("Home Depot order", "HOME DEPOT") == pytest.approx(2 / 3)

    def test_short_tokens_are_not_prefixes(self):
        assert token_overlap("A1", "A1B2") == 0.0

    def test_empty(self):
        assert token_overlap("", "Rent") == 0.0
        assert token_overlap(None, None) == 0.0

    def test_tokenize(self):
        assert tokenize("ACH: City-Power #42") == {"ach", "city", "power", "42"}


class TestRoundAmount:
    def test_absolute_cents(self):
        assert round_amount(Decimal("-100.005")) == Decimal("100.01")
        assert round_amount(Decimal("100")) == Decimal("100.00")


class TestTransactionMatcher:
    @pytest.fixture
    def matcher(self):
        return TransactionMatcher(date_tolerance_days=2, min_token_overlap=0.1)

    def test_matches_within_tolerance(self, matcher):
        left = [make_transaction("100.00", date(2024, 1, 5), "Rent Jan")]
        right = [make_native("d-1", "100.00", date(2024, 1, 6), "RENT JANUARY")]

        outcome = matcher.match(left, right)

        assert len(outcome.pairs) == 1
        assert outcome.unmatched_left == []
        assert outcome.unmatched_right == []
        signals = {s.signal: s for s in outcome.pairs[0].signals}
        assert signals["date"].detail == "1 days"

    def test_sign_is_ignored(self, matcher):
        left = [make_transaction("-42.10", description="City Power")]
        right = [make_native("n", "42.10", description="CITY POWER")]
        assert len(matcher.match(left, right).pairs) == 1

    def test_amount_mismatch(self, matcher):
        left = [make_transaction("100.00", description="Rent")]
        right = [make_native("n", "100.01", description="Rent")]

        outcome = matcher.match(left, right)

        assert outcome.pairs == []
        assert len(outcome.unmatched_left) == 1
        assert len(outcome.unmatched_right) == 1

    def test_outside_date_tolerance(self, matcher):
        left = [make_transaction("100", date(2024, 1, 1), "Rent")]
        right = [make_native("n", "100", date(2024, 1, 4), "Rent")]
        assert matcher.match(left, right).pairs == []

    def test_unrelated_descriptions(self, matcher):
        left = [make_transaction("100", description="Plumber")]
        right = [make_native("n", "100", description="Landscaping")]
        assert matcher.match(left, right).pairs == []

    def test_one_to_one_prefers_best_score(self, matcher):
        """The same-day record wins; the other stays unmatched."""
        left = [make_transaction("50", date(2024, 1, 5), "Water bill")]
        right = [
            make_native("far", "50", date(2024, 1, 7), "Water bill"),
            make_native("near", "50", date(2024, 1, 5), "Water bill"),
        ]

        outcome = matcher.match(left, right)

        assert [p.right.id for p in outcome.pairs] == ["near"]
        assert [tx.id for tx in outcome.unmatched_right] == ["far"]

    def test_identical_records_pair_in_order(self, matcher):
        left = [
            make_transaction("20", description="Fee", external_id="a"),
            make_transaction("20", description="Fee", external_id="b"),
        ]
        right = [make_native("x", "20", description="Fee"), make_native("y", "20", description="Fee")]

        outcome = matcher.match(left, right)

        assert [(p.left.external_id, p.right.id) for p in outcome.pairs] == [("a", "x"), ("b", "y")]

    def test_zero_tolerance(self):
        matcher = TransactionMatcher(date_tolerance_days=0)
        left = [make_transaction("10", date(2024, 1, 5), "Rent")]
        right = [make_native("n", "10", date(2024, 1, 6), "Rent")]
        assert matcher.match(left, right).pairs == []

    def test_empty_inputs(self, matcher):
        outcome = matcher.match([], [make_native()])
        assert outcome.pairs == []
        assert len(outcome.unmatched_right) == 1
