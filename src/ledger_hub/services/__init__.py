"""Ingestion, push, reconciliation and maintenance services."""

from ledger_hub.services.account_discovery import AccountDiscovery, DiscoveryResult
from ledger_hub.services.ingestion import IngestionPipeline, SyncResult
from ledger_hub.services.push import PushEngine, PushResult
from ledger_hub.services.recategorize import BulkRecategorizer, RecategorizeResult
from ledger_hub.services.reconciliation import (
    Discrepancy,
    DuplicateGroup,
    ReconciliationEngine,
    ReconciliationReport,
)

__all__ = [
    "AccountDiscovery",
    "BulkRecategorizer",
    "Discrepancy",
    "DiscoveryResult",
    "DuplicateGroup",
    "IngestionPipeline",
    "PushEngine",
    "PushResult",
    "RecategorizeResult",
    "ReconciliationEngine",
    "ReconciliationReport",
    "SyncResult",
]
