"""
Per-platform native record types.

Each record is validated at the connector boundary by ``from_api_response``,
which raises MalformedResponseError when a required field is missing or has
the wrong type. Validated records are converted into the canonical
NativeTransaction / ExternalAccount shapes; nothing downstream ever sees a raw
API dict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from ..errors import MalformedResponseError
from .transaction import (
    ExternalAccount,
    NativeTransaction,
    Platform,
    TransactionType,
    parse_iso_date,
    to_decimal,
)


def _require(data: Any, key: str, platform: Platform) -> Any:
    """Fetch a required key from an API object."""
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"expected object, got {type(data).__name__}", platform.value, payload=data
        )
    value = data.get(key)
    if value is None or value == "":
        raise MalformedResponseError(f"missing field '{key}'", platform.value, payload=data)
    return value


def _amount(value: Any, platform: Platform, data: dict) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as e:
        raise MalformedResponseError(str(e), platform.value, payload=data) from e


def _date(value: Any, platform: Platform, data: dict) -> date:
    try:
        return parse_iso_date(value)
    except ValueError as e:
        raise MalformedResponseError(str(e), platform.value, payload=data) from e


def _timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or len(value) <= 10:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _account_type(value: str | None) -> str:
    lowered = (value or "").lower()
    if lowered in ("checking", "savings"):
        return lowered
    return "other"


# ---------------------------------------------------------------------------
# Mercury (bank)
# ---------------------------------------------------------------------------


@dataclass
class MercuryAccountRecord:
    id: str
    name: str
    type: str
    balance: Decimal
    currency: str
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> MercuryAccountRecord:
        platform = Platform.MERCURY
        balance = data.get("balance") if isinstance(data, dict) else None
        if isinstance(balance, dict):
            amount = _amount(balance.get("amount", 0), platform, data)
            currency = balance.get("currency") or "USD"
        else:
            amount = _amount(balance if balance is not None else 0, platform, data)
            currency = data.get("currency") or "USD"
        return cls(
            id=str(_require(data, "id", platform)),
            name=str(_require(data, "name", platform)),
            type=_account_type(data.get("type")),
            balance=amount,
            currency=currency,
            raw=data,
        )

    def to_account(self) -> ExternalAccount:
        return ExternalAccount(
            platform=Platform.MERCURY.value,
            external_id=self.id,
            name=self.name,
            type=self.type,
            balance=self.balance,
            currency=self.currency,
            raw=self.raw,
        )


@dataclass
class MercuryTransactionRecord:
    """Mercury transaction.

    Mercury reports unsigned amounts with a credit/debit type on older API
    versions and signed amounts on newer ones; both are normalized so debits
    are negative.
    """

    id: str
    amount: Decimal
    transaction_date: date
    description: str
    kind: str  # credit or debit
    counterparty_name: str | None = None
    status: str | None = None
    category: str | None = None
    posted_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> MercuryTransactionRecord:
        platform = Platform.MERCURY
        amount = _amount(_require(data, "amount", platform), platform, data)
        raw_date = data.get("transaction_date") or data.get("postedAt") or data.get("createdAt")
        if raw_date is None:
            raise MalformedResponseError("missing field 'transaction_date'", platform.value, data)
        kind = (data.get("type") or ("debit" if amount < 0 else "credit")).lower()
        if kind not in ("credit", "debit"):
            raise MalformedResponseError(f"unknown transaction type '{kind}'", platform.value, data)
        description = data.get("description") or data.get("bankDescription") or ""
        counterparty = data.get("counterparty_name") or data.get("counterpartyName")
        return cls(
            id=str(_require(data, "id", platform)),
            amount=amount,
            transaction_date=_date(raw_date, platform, data),
            description=description or (counterparty or ""),
            kind=kind,
            counterparty_name=counterparty,
            status=data.get("status"),
            category=data.get("category") or data.get("mercuryCategory"),
            posted_at=_timestamp(raw_date),
            raw=data,
        )

    def to_native(self) -> NativeTransaction:
        signed = -abs(self.amount) if self.kind == "debit" else abs(self.amount)
        return NativeTransaction(
            id=self.id,
            amount=signed,
            date=self.transaction_date,
            description=self.description,
            vendor=self.counterparty_name,
            native_category=self.category,
            direction=TransactionType.EXPENSE if self.kind == "debit" else TransactionType.INCOME,
            posted_at=self.posted_at,
            raw=self.raw,
        )


# ---------------------------------------------------------------------------
# DoorLoop (property ledger)
# ---------------------------------------------------------------------------


@dataclass
class DoorLoopAccountRecord:
    id: str
    name: str
    type: str
    balance: Decimal
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> DoorLoopAccountRecord:
        platform = Platform.DOORLOOP
        return cls(
            id=str(_require(data, "id", platform)),
            name=str(_require(data, "name", platform)),
            type=_account_type(data.get("type")),
            balance=_amount(data.get("balance") or 0, platform, data),
            raw=data,
        )

    def to_account(self) -> ExternalAccount:
        return ExternalAccount(
            platform=Platform.DOORLOOP.value,
            external_id=self.id,
            name=self.name,
            type=self.type,
            balance=self.balance,
            raw=self.raw,
        )


@dataclass
class DoorLoopTransactionRecord:
    """DoorLoop ledger entry. Amounts are unsigned; ``type`` gives direction."""

    id: str
    amount: Decimal
    date: date
    type: str
    description: str
    category: str | None = None
    property_id: str | None = None
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> DoorLoopTransactionRecord:
        platform = Platform.DOORLOOP
        tx_type = str(_require(data, "type", platform)).lower()
        property_id = data.get("property_id") or data.get("propertyId") or data.get("property")
        return cls(
            id=str(_require(data, "id", platform)),
            amount=_amount(_require(data, "amount", platform), platform, data),
            date=_date(_require(data, "date", platform), platform, data),
            type=tx_type,
            description=data.get("description") or data.get("memo") or "",
            category=data.get("category") or data.get("account_name"),
            property_id=str(property_id) if property_id is not None else None,
            status=data.get("status"),
            raw=data,
        )

    def to_native(self) -> NativeTransaction:
        direction = TransactionType.INCOME if self.type == "income" else TransactionType.EXPENSE
        signed = abs(self.amount) if direction == TransactionType.INCOME else -abs(self.amount)
        return NativeTransaction(
            id=self.id,
            amount=signed,
            date=self.date,
            description=self.description,
            native_category=self.category,
            direction=direction,
            property_id=self.property_id,
            raw=self.raw,
        )


# ---------------------------------------------------------------------------
# Wave (accounting / primary ledger)
# ---------------------------------------------------------------------------


@dataclass
class WaveAccountRecord:
    id: str
    name: str
    type: str
    subtype: str | None
    balance: Decimal
    currency: str
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> WaveAccountRecord:
        platform = Platform.WAVE
        acct_type = data.get("type") if isinstance(data, dict) else None
        subtype = data.get("subtype") if isinstance(data, dict) else None
        currency = data.get("currency") if isinstance(data, dict) else None
        return cls(
            id=str(_require(data, "id", platform)),
            name=str(_require(data, "name", platform)),
            type=(acct_type or {}).get("value", "") if isinstance(acct_type, dict) else str(acct_type or ""),
            subtype=(subtype or {}).get("value") if isinstance(subtype, dict) else subtype,
            balance=_amount(data.get("balance") or 0, platform, data),
            currency=(currency or {}).get("code", "USD") if isinstance(currency, dict) else "USD",
            raw=data,
        )

    def to_account(self) -> ExternalAccount:
        kind = (self.subtype or "").lower()
        if "checking" in kind or "cash_and_bank" in kind:
            acct_type = "checking"
        elif "saving" in kind:
            acct_type = "savings"
        else:
            acct_type = "other"
        return ExternalAccount(
            platform=Platform.WAVE.value,
            external_id=self.id,
            name=self.name,
            type=acct_type,
            balance=self.balance,
            currency=self.currency,
            raw=self.raw,
        )


@dataclass
class WaveTransactionRecord:
    id: str
    amount: Decimal
    date: date
    description: str
    direction: str | None = None  # DEPOSIT or WITHDRAWAL
    category: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> WaveTransactionRecord:
        platform = Platform.WAVE
        amount_obj = _require(data, "amount", platform)
        value = amount_obj.get("value") if isinstance(amount_obj, dict) else amount_obj
        category = data.get("category")
        if isinstance(category, dict):
            category = category.get("name")
        return cls(
            id=str(_require(data, "id", platform)),
            amount=_amount(value, platform, data),
            date=_date(_require(data, "date", platform), platform, data),
            description=data.get("description") or "",
            direction=(data.get("direction") or None),
            category=category,
            raw=data,
        )

    def to_native(self) -> NativeTransaction:
        direction = None
        amount = self.amount
        if self.direction:
            if self.direction.upper() == "WITHDRAWAL":
                direction = TransactionType.EXPENSE
                amount = -abs(amount)
            elif self.direction.upper() == "DEPOSIT":
                direction = TransactionType.INCOME
                amount = abs(amount)
        return NativeTransaction(
            id=self.id,
            amount=amount,
            date=self.date,
            description=self.description,
            native_category=self.category,
            direction=direction,
            raw=self.raw,
        )


# ---------------------------------------------------------------------------
# Vendor feeds (REI, Home Depot, Amazon Business, Lowe's)
# ---------------------------------------------------------------------------


@dataclass
class VendorFeedRecord:
    id: str
    amount: Decimal
    date: date
    description: str
    category: str | None = None
    receipt_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict) -> VendorFeedRecord:
        platform = Platform.VENDOR
        return cls(
            id=str(_require(data, "id", platform)),
            amount=_amount(_require(data, "amount", platform), platform, data),
            date=_date(_require(data, "date", platform), platform, data),
            description=data.get("description") or "",
            category=data.get("category"),
            receipt_url=data.get("receipt_url") or data.get("receiptUrl"),
            raw=data,
        )

    def to_native(self, vendor: str, label: str, default_category: str | None) -> NativeTransaction:
        raw = dict(self.raw)
        raw["vendor"] = vendor
        if self.receipt_url:
            raw["receipt_url"] = self.receipt_url
        return NativeTransaction(
            id=f"{vendor}:{self.id}",
            amount=self.amount,
            date=self.date,
            description=f"{label}: {self.description}" if self.description else label,
            vendor=vendor,
            native_category=self.category or default_category,
            raw=raw,
        )
