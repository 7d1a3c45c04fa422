"""Matching engine for pairing transactions across platforms."""

from ledger_hub.matching.engine import (
    MatchCandidate,
    MatchOutcome,
    MatchScore,
    TransactionMatcher,
    round_amount,
    token_overlap,
)

__all__ = [
    "MatchCandidate",
    "MatchOutcome",
    "MatchScore",
    "TransactionMatcher",
    "round_amount",
    "token_overlap",
]
