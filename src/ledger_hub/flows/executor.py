"""Recording transactions through a flow template."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..errors import PersistenceConflict
from ..schemas.transaction import Platform, Transaction, TransactionType
from .catalog import STANDARD_FLOWS, FinancialFlowTemplate

if TYPE_CHECKING:
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class FlowExecution:
    success: bool
    transaction_id: int | None = None
    message: str = ""


class FlowExecutor:
    """Creates canonical transactions from flow templates."""

    def __init__(
        self,
        state_store: StateStore,
        catalog: Sequence[FinancialFlowTemplate] = STANDARD_FLOWS,
    ) -> None:
        self.store = state_store
        self.catalog = {flow.id: flow for flow in catalog}

    def execute(
        self,
        flow_id: str,
        amount: Decimal,
        description: str,
        tx_date: date,
        property_id: str | None = None,
        created_by: str | None = None,
        metadata: dict[str, Any] | None = None,
        external_id: str | None = None,
        external_source: str | None = None,
    ) -> FlowExecution:
        """
        Record a transaction with the flow's category, type and metadata.

        The amount's sign follows the flow type. Without an external source
        the transaction is a manual entry.
        """
        flow = self.catalog.get(flow_id)
        if flow is None:
            return FlowExecution(False, message=f"Financial flow with ID {flow_id} not found")

        if flow.requires_property and not property_id:
            return FlowExecution(False, message="Property ID is required for this financial flow")

        magnitude = abs(Decimal(amount))
        signed = -magnitude if flow.type == TransactionType.EXPENSE else magnitude

        transaction = Transaction(
            amount=signed,
            date=tx_date,
            description=description,
            category=flow.category,
            type=flow.type,
            external_id=external_id,
            external_source=external_source or Platform.MANUAL.value,
            property_id=property_id,
            metadata={**(metadata or {}), "flow_id": flow.id, "flow_kind": flow.kind.value},
            created_by=created_by,
        )
        try:
            transaction_id = self.store.create_transaction(transaction)
        except PersistenceConflict as e:
            logger.info("Flow %s not recorded: %s", flow.id, e)
            return FlowExecution(False, message=str(e))

        logger.info("Executed %s flow as transaction %d", flow.name, transaction_id)
        return FlowExecution(
            True,
            transaction_id=transaction_id,
            message=f"Successfully executed {flow.name} flow",
        )
