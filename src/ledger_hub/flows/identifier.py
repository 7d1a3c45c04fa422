"""
Financial flow identification.

Steps:
1. Resolve category and type with the category resolver
2. Keep templates with the same category and type
3. With a property attached, prefer templates that require one
4. Break remaining ties on description keywords
5. Fall back to the first remaining candidate
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ..categorization.resolver import CategoryResolver
from .catalog import STANDARD_FLOWS, FinancialFlowTemplate, FlowKind

logger = logging.getLogger(__name__)

# Ordered keyword tie-breaks: first template kind whose keywords appear wins
TIE_BREAK_KEYWORDS: tuple[tuple[FlowKind, tuple[str, ...]], ...] = (
    (FlowKind.RENT_COLLECTION, ("rent", "lease payment")),
    (FlowKind.MAINTENANCE_EXPENSE, ("repair", "maintenance")),
    (FlowKind.UTILITY_PAYMENT, ("utility", "water", "electric", "gas")),
    (FlowKind.SECURITY_DEPOSIT, ("deposit",)),
    (FlowKind.LATE_FEE, ("late fee",)),
)


@dataclass
class TransactionDraft:
    """A transaction that has not been recorded yet."""

    description: str
    amount: Decimal
    vendor: str | None = None
    date: date | None = None
    property_id: str | None = None
    platform: str | None = None
    native_category: str | None = None


class FlowIdentifier:
    """Picks the flow template describing a draft transaction.

    Args:
        resolver: Category resolver for step 1.
        catalog: Flow templates; defaults to the standard catalog.
        use_ai: Whether the resolver may call the AI classifier.
    """

    def __init__(
        self,
        resolver: CategoryResolver,
        catalog: Sequence[FinancialFlowTemplate] = STANDARD_FLOWS,
        use_ai: bool = False,
    ) -> None:
        self.resolver = resolver
        self.catalog = tuple(catalog)
        self.use_ai = use_ai

    def identify(self, draft: TransactionDraft) -> FinancialFlowTemplate | None:
        resolution = self.resolver.resolve(
            draft.description,
            Decimal(draft.amount),
            vendor=draft.vendor,
            platform=draft.platform,
            native_category=draft.native_category,
            use_ai=self.use_ai,
        )
        candidates = [
            flow
            for flow in self.catalog
            if flow.category == resolution.category and flow.type == resolution.type
        ]
        if not candidates:
            logger.debug(
                "No flow for %s/%s", resolution.category.value, resolution.type.value
            )
            return None

        if len(candidates) > 1 and draft.property_id:
            property_flows = [flow for flow in candidates if flow.requires_property]
            if property_flows:
                candidates = property_flows

        if len(candidates) > 1:
            description = (draft.description or "").lower()
            for kind, keywords in TIE_BREAK_KEYWORDS:
                if not any(keyword in description for keyword in keywords):
                    continue
                for flow in candidates:
                    if flow.kind == kind:
                        return flow

        return candidates[0]

    def list_flows(self, kind: FlowKind | str | None = None) -> list[FinancialFlowTemplate]:
        """All templates, or only those of one kind."""
        if kind is None:
            return list(self.catalog)
        kind = FlowKind(kind)
        return [flow for flow in self.catalog if flow.kind == kind]

    def get_flow(self, flow_id: str) -> FinancialFlowTemplate | None:
        return next((flow for flow in self.catalog if flow.id == flow_id), None)
