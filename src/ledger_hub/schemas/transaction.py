"""
Canonical transaction model (SSOT).

Every connector maps its native records into these types. No other module
may invent another "transaction schema"; the store, the push engine and the
reconciliation engine all speak in terms of these dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class TransactionCategory(str, Enum):
    """Standard category taxonomy.

    Declaration order is the keyword tie-break order.
    """

    RENT = "rent"
    MAINTENANCE = "maintenance"
    UTILITIES = "utilities"
    INSURANCE = "insurance"
    TAXES = "taxes"
    MORTGAGE = "mortgage"
    SUPPLIES = "supplies"
    CLEANING = "cleaning"
    MARKETING = "marketing"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> TransactionCategory | None:
        """Parse a category name leniently (case and whitespace insensitive)."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class TransactionType(str, Enum):
    """Direction of a transaction."""

    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def from_amount(cls, amount: Decimal) -> TransactionType:
        """Infer direction from the sign of a signed amount."""
        return cls.EXPENSE if amount < 0 else cls.INCOME

    @classmethod
    def parse(cls, value: str | None) -> TransactionType | None:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Platform(str, Enum):
    """External systems a transaction can originate from.

    WAVE is the primary accounting ledger that the push engine writes to.
    MANUAL marks user or flow generated entries (not subject to the
    natural-key uniqueness rule).
    """

    DOORLOOP = "doorloop"
    MERCURY = "mercury"
    WAVE = "wave"
    VENDOR = "vendor"
    MANUAL = "manual"


LEDGER_PLATFORM = Platform.WAVE

# Platforms that can be ingested by the pipeline
SOURCE_PLATFORMS = (Platform.DOORLOOP, Platform.MERCURY, Platform.WAVE, Platform.VENDOR)


def to_decimal(value: Any) -> Decimal:
    """Convert an API amount (str, int, float, Decimal) to Decimal.

    Raises:
        ValueError: If the value is not a number.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"amount must be numeric, got: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation as e:
        raise ValueError(f"amount must be numeric, got: {value!r}") from e


def parse_iso_date(value: Any) -> date:
    """Parse YYYY-MM-DD or a full ISO-8601 timestamp into a date.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        raise ValueError(f"date must be ISO formatted, got: {value!r}")
    return date.fromisoformat(value[:10])


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class NativeTransaction:
    """Platform record after boundary validation, before normalization.

    Attributes:
        id: Platform-assigned record id (natural key together with platform).
        amount: Signed amount (negative = money out).
        date: Transaction date.
        description: Free-text description.
        vendor: Counterparty or vendor name when the platform supplies one.
        native_category: Platform's own category label, if any.
        direction: Explicit income/expense label when the platform has one.
        property_id: Property reference when the platform carries one.
        raw: Original payload, preserved into canonical metadata.
    """

    id: str
    amount: Decimal
    date: date
    description: str
    vendor: str | None = None
    native_category: str | None = None
    direction: TransactionType | None = None
    property_id: str | None = None
    posted_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def timestamp(self) -> datetime:
        """Timestamp used to advance the sync cursor."""
        if self.posted_at is not None:
            return self.posted_at
        return datetime(self.date.year, self.date.month, self.date.day, tzinfo=timezone.utc)


@dataclass
class Transaction:
    """Canonical transaction.

    Identity fields (external_id, external_source) are immutable once the
    row exists; only the recategorization pass mutates classification fields.
    """

    amount: Decimal
    date: date
    description: str
    category: TransactionCategory
    type: TransactionType
    external_id: str | None
    external_source: str
    property_id: str | None = None
    ai_categorized: bool = False
    ai_confidence: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: datetime | None = None
    created_by: str | None = None

    @property
    def is_manual(self) -> bool:
        return self.external_source == Platform.MANUAL.value

    @property
    def natural_key(self) -> tuple[str | None, str]:
        return (self.external_id, self.external_source)


@dataclass
class ExternalAccount:
    """Account on an external platform, upserted on every sync pass."""

    platform: str
    external_id: str
    name: str
    type: str = "other"  # checking, savings, other
    balance: Decimal = Decimal("0")
    currency: str = "USD"
    last_synced_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CategoryMappingEntry:
    """Canonical category and its per-platform vocabulary."""

    category: TransactionCategory
    native_names: dict[str, str]
    ledger_account_ids: dict[str, str] = field(default_factory=dict)

    @property
    def ledger_account_id(self) -> str | None:
        """Discovered account id on the primary ledger, if any."""
        return self.ledger_account_ids.get(LEDGER_PLATFORM.value)


@dataclass
class SyncCursor:
    """Per-account sync watermark."""

    platform: str
    account_id: str
    last_synced_at: datetime
