"""
Idempotency key generation (CRITICAL).

This module defines THE deterministic keys used to detect re-submission of a
canonical transaction to the primary ledger, and to spot duplicate records
inside a single platform's data.

Push key format: lh:{hash[:24]}
- hash = SHA256(source|external_id|date|amount)
- manual rows without an external id fall back to the store id

The key must be:
- Stable: the same canonical row always yields the same key
- Collision-resistant: different rows yield different keys
- Reproducible: can be regenerated from stored data
"""

import hashlib
from datetime import date
from decimal import Decimal

PUSH_KEY_PREFIX = "lh:"

# Length of the hash prefix to use
HASH_PREFIX_LENGTH = 24


def _normalize_amount(amount: Decimal | str | float) -> str:
    """
    Normalize amount to consistent format for hashing.

    Args:
        amount: Amount in various formats

    Returns:
        Normalized amount string with 2 decimal places
    """
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", ""))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{amount:.2f}"


def _normalize_string(value: str | None) -> str:
    """Normalize a string for hashing (lowercase, collapse whitespace)."""
    if not value:
        return ""
    return " ".join(value.split()).lower()


def compute_transaction_hash(
    amount: Decimal | str | float,
    tx_date: date | str,
    description: str | None = None,
) -> str:
    """
    Compute a content hash of a transaction's amount, date and description.

    Used to detect duplicate records within one platform where the platform
    itself assigned different ids to the same economic event.

    Returns:
        64-character lowercase hex SHA256 hash
    """
    normalized_date = tx_date.isoformat() if isinstance(tx_date, date) else tx_date.strip()[:10]
    canonical = f"{_normalize_amount(amount)}|{normalized_date}|{_normalize_string(description)}"
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_push_key(
    external_source: str,
    external_id: str | None,
    tx_date: date | str,
    amount: Decimal | str | float,
    transaction_id: int | None = None,
) -> str:
    """
    Generate the idempotency key for pushing a transaction to the ledger.

    Args:
        external_source: Originating platform
        external_id: Platform record id (None for some manual rows)
        tx_date: Transaction date
        amount: Signed amount
        transaction_id: Store id, required when external_id is None

    Returns:
        Push key string

    Examples:
        >>> generate_push_key("mercury", "tx_1", "2024-01-05", "-10.00")
        'lh:...'
    """
    if external_id is None:
        if transaction_id is None:
            raise ValueError("transaction_id is required when external_id is missing")
        identity = f"id:{transaction_id}"
    else:
        identity = external_id.strip()

    normalized_date = tx_date.isoformat() if isinstance(tx_date, date) else tx_date.strip()[:10]
    canonical = "|".join(
        [
            _normalize_string(external_source),
            identity,
            normalized_date,
            _normalize_amount(amount),
        ]
    )
    full_hash = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{PUSH_KEY_PREFIX}{full_hash[:HASH_PREFIX_LENGTH]}"


def is_push_key(value: str | None) -> bool:
    """Check whether a string looks like a push idempotency key."""
    if not value or not value.startswith(PUSH_KEY_PREFIX):
        return False
    digest = value[len(PUSH_KEY_PREFIX):]
    return len(digest) == HASH_PREFIX_LENGTH and all(c in "0123456789abcdef" for c in digest)
