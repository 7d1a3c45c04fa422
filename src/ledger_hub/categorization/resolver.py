"""
Category resolution.

Order, first match wins:
1. Direct mapping of the platform's native category (confidence 1.0)
2. Keyword table over description and vendor (confidence 1.0)
3. AI classifier, accepted only above the acceptance threshold

A mapping or keyword result of OTHER is not decisive and falls through to
the next step. Classifier failures degrade to OTHER with confidence 0.3 and
never propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

from ..errors import ClassificationError
from ..schemas.transaction import TransactionCategory, TransactionType
from .mapping import CategoryMappingTable
from .taxonomy import keyword_category

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTANCE_THRESHOLD = 0.70

# Confidence recorded when the classifier fails outright
FAILURE_CONFIDENCE = 0.3


class Classifier(Protocol):
    """What the resolver needs from the AI adapter."""

    def classify(self, description: str, amount: Decimal, vendor: str | None = None): ...


class ResolutionSource(str, Enum):
    MAPPING = "mapping"
    KEYWORD = "keyword"
    AI = "ai"


@dataclass
class Resolution:
    """Outcome of resolving one transaction.

    Attributes:
        category: Canonical category.
        type: Income or expense.
        confidence: Confidence of the accepted answer (or the rejected AI
            confidence when the category stayed OTHER).
        source: Which step produced the answer.
        accepted: False when the AI answer was rejected or failed.
    """

    category: TransactionCategory
    type: TransactionType
    confidence: float
    source: ResolutionSource
    accepted: bool = True
    reason: str = ""

    @property
    def counts_as_categorized(self) -> bool:
        """Deterministic steps always count; AI only when accepted."""
        return self.accepted

    @property
    def ai_categorized(self) -> bool:
        return self.source == ResolutionSource.AI and self.accepted


def _direction(amount: Decimal, explicit: TransactionType | None) -> TransactionType:
    return explicit if explicit is not None else TransactionType.from_amount(amount)


class CategoryResolver:
    """Resolves canonical categories for incoming transactions.

    Args:
        mapping: Category mapping table (injected, shared by workers).
        classifier: Optional AI classifier; without one step 3 is skipped.
        acceptance_threshold: AI confidence must be strictly greater.
    """

    def __init__(
        self,
        mapping: CategoryMappingTable,
        classifier: Classifier | None = None,
        acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD,
    ) -> None:
        self.mapping = mapping
        self.classifier = classifier
        self.acceptance_threshold = acceptance_threshold

    def resolve(
        self,
        description: str,
        amount: Decimal,
        vendor: str | None = None,
        platform: str | None = None,
        native_category: str | None = None,
        direction: TransactionType | None = None,
        use_ai: bool = True,
    ) -> Resolution:
        """Resolve category and type for one transaction."""
        tx_type = _direction(amount, direction)

        mapped = self.mapping.lookup(platform, native_category)
        if mapped is not None and mapped is not TransactionCategory.OTHER:
            return Resolution(mapped, tx_type, 1.0, ResolutionSource.MAPPING)

        by_keyword = keyword_category(description, vendor)
        if by_keyword is not TransactionCategory.OTHER:
            return Resolution(by_keyword, tx_type, 1.0, ResolutionSource.KEYWORD)

        if not use_ai or self.classifier is None:
            return Resolution(
                TransactionCategory.OTHER, tx_type, 0.0, ResolutionSource.KEYWORD, accepted=False
            )

        return self._resolve_with_ai(description, amount, vendor, tx_type)

    def _resolve_with_ai(
        self,
        description: str,
        amount: Decimal,
        vendor: str | None,
        tx_type: TransactionType,
    ) -> Resolution:
        try:
            result = self.classifier.classify(description, amount, vendor=vendor)
        except ClassificationError as e:
            logger.debug("Classifier failed, keeping 'other': %s", e)
            return self._failed(tx_type, str(e))
        except Exception as e:
            logger.warning("Classifier raised %s, keeping 'other': %s", type(e).__name__, e)
            return self._failed(tx_type, str(e))

        if result.confidence > self.acceptance_threshold:
            return Resolution(
                result.category,
                result.type,
                result.confidence,
                ResolutionSource.AI,
                reason=result.reason,
            )

        logger.debug(
            "Rejected AI category %s at confidence %.2f", result.category.value, result.confidence
        )
        return Resolution(
            TransactionCategory.OTHER,
            tx_type,
            result.confidence,
            ResolutionSource.AI,
            accepted=False,
            reason=result.reason,
        )

    @staticmethod
    def _failed(tx_type: TransactionType, reason: str) -> Resolution:
        return Resolution(
            TransactionCategory.OTHER,
            tx_type,
            FAILURE_CONFIDENCE,
            ResolutionSource.AI,
            accepted=False,
            reason=reason,
        )
