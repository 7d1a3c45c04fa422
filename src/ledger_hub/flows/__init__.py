"""Financial flow templates, identification and execution."""

from ledger_hub.flows.catalog import (
    STANDARD_FLOWS,
    FinancialFlowTemplate,
    FlowKind,
    Recurrence,
)
from ledger_hub.flows.executor import FlowExecution, FlowExecutor
from ledger_hub.flows.identifier import FlowIdentifier, TransactionDraft

__all__ = [
    "FinancialFlowTemplate",
    "FlowExecution",
    "FlowExecutor",
    "FlowIdentifier",
    "FlowKind",
    "Recurrence",
    "STANDARD_FLOWS",
    "TransactionDraft",
]
