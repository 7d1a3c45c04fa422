"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from ledger_hub.categorization import CategoryMappingTable, CategoryResolver
from ledger_hub.schemas.transaction import (
    NativeTransaction,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from ledger_hub.state_store import StateStore

# Mercury /accounts response
SAMPLE_MERCURY_ACCOUNTS = {
    "accounts": [
        {
            "id": "acc-checking-1",
            "name": "Operating Checking",
            "type": "checking",
            "balance": 15230.55,
            "status": "active",
        },
        {
            "id": "acc-savings-1",
            "name": "Reserve Savings",
            "type": "savings",
            "balance": 50000,
            "status": "active",
        },
    ]
}

# Mercury /accounts/{id}/transactions response
SAMPLE_MERCURY_TRANSACTIONS = {
    "total": 3,
    "transactions": [
        {
            "id": "txn-1",
            "amount": -142.17,
            "postedAt": "2024-01-05T14:30:00Z",
            "createdAt": "2024-01-05T14:00:00Z",
            "bankDescription": "CITY POWER AND LIGHT",
            "counterpartyName": "City Power",
            "mercuryCategory": "Utility Payments",
            "kind": "debitCardTransaction",
            "status": "sent",
        },
        {
            "id": "txn-2",
            "amount": -480.00,
            "postedAt": "2024-01-06T09:15:00Z",
            "createdAt": "2024-01-06T09:00:00Z",
            "bankDescription": "Emergency plumbing repair",
            "counterpartyName": "Joe's Plumbing",
            "kind": "externalTransfer",
            "status": "sent",
        },
        {
            "id": "txn-3",
            "amount": -310.00,
            "postedAt": "2024-01-07T10:00:00Z",
            "createdAt": "2024-01-07T09:45:00Z",
            "bankDescription": "ACME MUTUAL PREMIUM 0423",
            "counterpartyName": "Acme Mutual",
            "kind": "externalTransfer",
            "status": "sent",
        },
    ],
}


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def mapping() -> CategoryMappingTable:
    """Mapping table backed by an in-memory store."""
    return CategoryMappingTable()


@pytest.fixture
def resolver(mapping) -> CategoryResolver:
    """Deterministic resolver (no AI classifier)."""
    return CategoryResolver(mapping)


def make_transaction(
    amount: str = "-100.00",
    tx_date: date = date(2024, 1, 5),
    description: str = "Test transaction",
    category: TransactionCategory = TransactionCategory.OTHER,
    external_id: str | None = "ext-1",
    external_source: str = "mercury",
    **kwargs,
) -> Transaction:
    """Canonical transaction with sensible defaults."""
    value = Decimal(amount)
    return Transaction(
        amount=value,
        date=tx_date,
        description=description,
        category=category,
        type=kwargs.pop("type", TransactionType.from_amount(value)),
        external_id=external_id,
        external_source=external_source,
        **kwargs,
    )


def make_native(
    id: str = "n-1",
    amount: str = "-100.00",
    tx_date: date = date(2024, 1, 5),
    description: str = "Test transaction",
    **kwargs,
) -> NativeTransaction:
    """Native (platform) transaction with sensible defaults."""
    return NativeTransaction(
        id=id,
        amount=Decimal(amount),
        date=tx_date,
        description=description,
        **kwargs,
    )
