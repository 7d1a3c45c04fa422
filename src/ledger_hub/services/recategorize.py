"""
Bulk AI recategorization.

Re-runs the AI classifier over stored transactions that are still "other"
or were never AI-categorized, and updates their classification when the
classifier is confident enough. Only classification fields change; the
natural key of a row is never touched.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from ..categorization.resolver import DEFAULT_ACCEPTANCE_THRESHOLD, Classifier
from ..errors import ClassificationError
from ..schemas.transaction import Transaction, TransactionCategory

if TYPE_CHECKING:
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_RECATEGORIZE_DAYS = 31


@dataclass
class RecategorizeResult:
    processed: int = 0
    categorized: int = 0
    unchanged: int = 0
    errors: int = 0
    error_details: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "categorized": self.categorized,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "error_details": self.error_details,
            "duration_ms": self.duration_ms,
        }


def needs_recategorization(transaction: Transaction) -> bool:
    return transaction.category is TransactionCategory.OTHER or not transaction.ai_categorized


class BulkRecategorizer:
    """Classifies stored transactions again with the AI adapter.

    Args:
        state_store: Canonical store.
        classifier: AI classifier (anything with ``classify``).
        acceptance_threshold: Confidence must be strictly greater.
        days: Default window (days back from today).
    """

    def __init__(
        self,
        state_store: StateStore,
        classifier: Classifier,
        acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD,
        days: int = DEFAULT_RECATEGORIZE_DAYS,
    ) -> None:
        self.store = state_store
        self.classifier = classifier
        self.acceptance_threshold = acceptance_threshold
        self.days = days

    def run(self, date_range: tuple[date, date] | None = None) -> RecategorizeResult:
        """
        Recategorize transactions in a date range.

        Args:
            date_range: Inclusive (start, end); defaults to the last ``days`` days.

        Returns:
            RecategorizeResult with counters and per-item error details.
        """
        start_time = time.time()
        result = RecategorizeResult()

        if date_range is None:
            end = date.today()
            start = end - timedelta(days=self.days)
        else:
            start, end = date_range

        candidates = [
            tx
            for tx in self.store.get_transactions_by_date_range(start, end)
            if needs_recategorization(tx)
        ]
        logger.info("Recategorizing %d transaction(s) from %s to %s", len(candidates), start, end)

        for transaction in candidates:
            result.processed += 1
            try:
                classification = self.classifier.classify(
                    transaction.description,
                    transaction.amount,
                    vendor=transaction.metadata.get("vendor"),
                )
            except ClassificationError as e:
                result.errors += 1
                result.error_details.append(f"transaction {transaction.id}: {e}")
                continue

            if (
                classification.confidence <= self.acceptance_threshold
                or classification.category == transaction.category
            ):
                result.unchanged += 1
                continue

            try:
                self.store.update_transaction_classification(
                    transaction.id,
                    classification.category,
                    classification.type,
                    True,
                    classification.confidence,
                )
            except sqlite3.Error as e:
                logger.warning("Could not update transaction %s: %s", transaction.id, e)
                result.errors += 1
                result.error_details.append(f"transaction {transaction.id}: {e}")
                continue

            logger.debug(
                "Transaction %s: %s -> %s (%.2f)",
                transaction.id,
                transaction.category.value,
                classification.category.value,
                classification.confidence,
            )
            result.categorized += 1

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Recategorization completed: %d processed, %d categorized, %d unchanged, %d errors",
            result.processed,
            result.categorized,
            result.unchanged,
            result.errors,
        )
        return result
