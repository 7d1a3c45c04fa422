"""Matching engine for pairing canonical transactions with platform records.

A canonical transaction and a platform record form a candidate pair only
when all three signals agree:
- Amount: absolute values equal after rounding to cents
- Date: within the configured tolerance (default +-2 days)
- Description: token overlap (Jaccard) at or above the configured minimum

Candidates are ranked by a weighted score and paired greedily, best first,
so each record is used at most once.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

L = TypeVar("L")
R = TypeVar("R")

CENT = Decimal("0.01")
# Tokens shorter than this never count as a prefix of a longer token
MIN_PREFIX_LENGTH = 3

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class MatchScore:
    """Individual signal contribution to a match score."""

    signal: str
    score: float
    weight: float
    detail: str

    @property
    def weighted_score(self) -> float:
        return self.score * self.weight


@dataclass
class MatchCandidate(Generic[L, R]):
    """A scored pair of records that satisfies every matching rule."""

    left: L
    right: R
    left_index: int
    right_index: int
    signals: list[MatchScore] = field(default_factory=list)

    @property
    def total_score(self) -> float:
        return sum(s.weighted_score for s in self.signals)


@dataclass
class MatchOutcome(Generic[L, R]):
    """Result of pairing two record lists."""

    pairs: list[MatchCandidate[L, R]] = field(default_factory=list)
    unmatched_left: list[L] = field(default_factory=list)
    unmatched_right: list[R] = field(default_factory=list)


def round_amount(amount: Decimal) -> Decimal:
    """Absolute amount rounded to cents."""
    return abs(Decimal(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def tokenize(text: str | None) -> set[str]:
    """Lower-case alphanumeric tokens."""
    return set(_TOKEN_RE.findall((text or "").lower()))


def _tokens_equal(a: str, b: str) -> bool:
    if a == b:
        return True
    short, long = (a, b) if len(a) <= len(b) else (b, a)
    return len(short) >= MIN_PREFIX_LENGTH and long.startswith(short)


def token_overlap(left: str | None, right: str | None) -> float:
    """Jaccard overlap where a token also matches a longer token it prefixes.

    "Rent Jan" and "RENT JANUARY" overlap fully.
    """
    left_tokens = tokenize(left)
    right_tokens = tokenize(right)
    if not left_tokens or not right_tokens:
        return 0.0

    matched_right: set[str] = set()
    shared = 0
    for token in sorted(left_tokens):
        for other in sorted(right_tokens - matched_right):
            if _tokens_equal(token, other):
                matched_right.add(other)
                shared += 1
                break

    union = len(left_tokens) + len(right_tokens) - shared
    return shared / union if union else 0.0


class TransactionMatcher:
    """Pairs two lists of transactions one-to-one.

    Records only need ``amount``, ``date`` and ``description`` attributes, so
    canonical Transaction and NativeTransaction objects can be mixed freely.
    """

    WEIGHT_AMOUNT = 0.40
    WEIGHT_DATE = 0.30
    WEIGHT_DESCRIPTION = 0.30

    def __init__(self, date_tolerance_days: int = 2, min_token_overlap: float = 0.1) -> None:
        self.date_tolerance_days = date_tolerance_days
        self.min_token_overlap = min_token_overlap

    def _score_amount(self, left: Decimal, right: Decimal) -> MatchScore | None:
        rounded_left = round_amount(left)
        rounded_right = round_amount(right)
        if rounded_left != rounded_right:
            return None
        return MatchScore(
            signal="amount",
            score=1.0,
            weight=self.WEIGHT_AMOUNT,
            detail=f"exact: {rounded_left}",
        )

    def _score_date(self, left: date, right: date) -> MatchScore | None:
        days_diff = abs((left - right).days)
        if days_diff > self.date_tolerance_days:
            return None
        if days_diff == 0:
            return MatchScore(signal="date", score=1.0, weight=self.WEIGHT_DATE, detail="same day")
        # Linear decay within tolerance
        return MatchScore(
            signal="date",
            score=1.0 - days_diff / (self.date_tolerance_days + 1),
            weight=self.WEIGHT_DATE,
            detail=f"{days_diff} days",
        )

    def _score_description(self, left: str | None, right: str | None) -> MatchScore | None:
        overlap = token_overlap(left, right)
        if overlap <= 0.0 or overlap < self.min_token_overlap:
            return None
        return MatchScore(
            signal="description",
            score=overlap,
            weight=self.WEIGHT_DESCRIPTION,
            detail=f"overlap: {overlap:.2f}",
        )

    def score(self, left, right) -> list[MatchScore] | None:
        """Signals for a pair, or None when any rule rejects it."""
        signals = []
        for scored in (
            self._score_amount(left.amount, right.amount),
            self._score_date(left.date, right.date),
            self._score_description(left.description, right.description),
        ):
            if scored is None:
                return None
            signals.append(scored)
        return signals

    def match(self, left: list[L], right: list[R]) -> MatchOutcome[L, R]:
        """Greedy best-score one-to-one pairing."""
        candidates: list[MatchCandidate[L, R]] = []
        for i, lhs in enumerate(left):
            for j, rhs in enumerate(right):
                signals = self.score(lhs, rhs)
                if signals is not None:
                    candidates.append(MatchCandidate(lhs, rhs, i, j, signals))

        # Stable order: best score first, then input order
        candidates.sort(key=lambda c: (-c.total_score, c.left_index, c.right_index))

        used_left: set[int] = set()
        used_right: set[int] = set()
        outcome: MatchOutcome[L, R] = MatchOutcome()
        for candidate in candidates:
            if candidate.left_index in used_left or candidate.right_index in used_right:
                continue
            used_left.add(candidate.left_index)
            used_right.add(candidate.right_index)
            outcome.pairs.append(candidate)

        outcome.unmatched_left = [tx for i, tx in enumerate(left) if i not in used_left]
        outcome.unmatched_right = [tx for j, tx in enumerate(right) if j not in used_right]
        logger.debug(
            "Matched %d pairs (%d left, %d right unmatched)",
            len(outcome.pairs),
            len(outcome.unmatched_left),
            len(outcome.unmatched_right),
        )
        return outcome
