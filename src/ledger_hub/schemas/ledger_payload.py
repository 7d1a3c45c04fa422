"""
Primary ledger (Wave) transaction payload builder (SSOT).

This is THE single builder that maps a canonical Transaction to the ledger's
create-transaction input.

Rules:
- Always set date/description/amount/category
- Always set external_id (the push idempotency key)
- Amount keeps its sign; direction is derived from it
- account_id is the ledger account discovered for the category, if known
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .dedupe import generate_push_key
from .transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class LedgerTransactionPayload:
    """Ledger-native transaction."""

    business_id: str
    date: str  # YYYY-MM-DD
    description: str
    amount: str  # signed decimal string
    category: str
    external_id: str
    account_id: str | None = None

    @property
    def direction(self) -> str:
        return "WITHDRAWAL" if Decimal(self.amount) < 0 else "DEPOSIT"

    def to_dict(self) -> dict[str, Any]:
        """Convert to the simple JSON form."""
        result: dict[str, Any] = {
            "businessId": self.business_id,
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "externalId": self.external_id,
        }
        if self.account_id is not None:
            result["accountId"] = self.account_id
        return result


def build_ledger_payload(
    transaction: Transaction,
    business_id: str,
    account_id: str | None = None,
) -> LedgerTransactionPayload:
    """
    Build the ledger payload for a canonical transaction.

    Args:
        transaction: Canonical transaction to push
        business_id: Ledger business the transaction belongs to
        account_id: Ledger account discovered for the category

    Returns:
        LedgerTransactionPayload
    """
    push_key = generate_push_key(
        external_source=transaction.external_source,
        external_id=transaction.external_id,
        tx_date=transaction.date,
        amount=transaction.amount,
        transaction_id=transaction.id,
    )
    return LedgerTransactionPayload(
        business_id=business_id,
        date=transaction.date.isoformat(),
        description=transaction.description or "(no description)",
        amount=f"{transaction.amount:.2f}",
        category=transaction.category.value,
        external_id=push_key,
        account_id=account_id,
    )


def validate_ledger_payload(payload: LedgerTransactionPayload) -> list[str]:
    """
    Validate a ledger payload meets API requirements.

    Returns:
        List of validation errors (empty if valid)
    """
    errors: list[str] = []

    if not payload.business_id:
        errors.append("businessId is required")
    if not payload.date or len(payload.date) != 10:
        errors.append(f"date must be YYYY-MM-DD, got: {payload.date}")
    if not payload.description:
        errors.append("description is required")
    if not payload.category:
        errors.append("category is required")
    if not payload.external_id:
        errors.append("externalId is required for idempotent pushes")

    try:
        if Decimal(payload.amount) == 0:
            errors.append("amount must be non-zero")
    except (InvalidOperation, TypeError):
        errors.append(f"amount must be a valid decimal, got: {payload.amount}")

    return errors
