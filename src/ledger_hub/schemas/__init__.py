"""
SSOT (Single Source of Truth) schemas.

These canonical schemas are the ONLY models used across all modules.
Native per-platform records live in ``native`` and never leave the
connector layer.
"""

from .dedupe import (
    PUSH_KEY_PREFIX,
    compute_transaction_hash,
    generate_push_key,
    is_push_key,
)
from .ledger_payload import (
    LedgerTransactionPayload,
    build_ledger_payload,
    validate_ledger_payload,
)
from .transaction import (
    LEDGER_PLATFORM,
    SOURCE_PLATFORMS,
    CategoryMappingEntry,
    ExternalAccount,
    NativeTransaction,
    Platform,
    SyncCursor,
    Transaction,
    TransactionCategory,
    TransactionType,
    parse_iso_date,
    to_decimal,
)

__all__ = [
    "PUSH_KEY_PREFIX",
    "compute_transaction_hash",
    "generate_push_key",
    "is_push_key",
    "LedgerTransactionPayload",
    "build_ledger_payload",
    "validate_ledger_payload",
    "LEDGER_PLATFORM",
    "SOURCE_PLATFORMS",
    "CategoryMappingEntry",
    "ExternalAccount",
    "NativeTransaction",
    "Platform",
    "SyncCursor",
    "Transaction",
    "TransactionCategory",
    "TransactionType",
    "parse_iso_date",
    "to_decimal",
]
