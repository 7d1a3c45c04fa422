"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Canonical transactions ingested from every platform
- External accounts and per-account sync cursors
- Ledger account ids discovered per category
- Pushes to the primary ledger

Enforces uniqueness of (external_id, external_source) for non-manual rows.
"""

from .sqlite_store import (
    PushRecord,
    PushStatus,
    StateStore,
)

__all__ = [
    "StateStore",
    "PushRecord",
    "PushStatus",
]
