"""
Learning mapping rules for unknown native category labels.

When a platform uses a category label the static vocabulary does not know,
the AI classifier is asked which canonical category it means. Suggestions
above the rule threshold are stored in the mapping table so later syncs
resolve the label deterministically.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import ClassificationError
from ..schemas.transaction import TransactionCategory
from .mapping import CategoryMappingTable

if TYPE_CHECKING:
    from ..ai_classifier import AIClassifier

logger = logging.getLogger(__name__)


class CategoryMapper:
    """Generates and stores mapping rules for native category labels."""

    def __init__(
        self,
        mapping: CategoryMappingTable,
        classifier: AIClassifier,
        rule_threshold: float = 0.5,
    ) -> None:
        self.mapping = mapping
        self.classifier = classifier
        self.rule_threshold = rule_threshold

    def map_category(
        self,
        platform: str,
        native_category: str,
        samples: list[tuple[str, str]] | None = None,
    ) -> TransactionCategory:
        """
        Map one native label, learning it when the suggestion is confident.

        Known labels are answered from the table without calling the model.
        Low-confidence or failed suggestions map to OTHER and are not stored.
        """
        known = self.mapping.lookup(platform, native_category)
        if known is not None:
            return known

        try:
            suggestion = self.classifier.suggest_mapping(platform, native_category, samples)
        except ClassificationError as e:
            logger.warning("Could not map %s category '%s': %s", platform, native_category, e)
            return TransactionCategory.OTHER

        if suggestion.confidence > self.rule_threshold:
            self.mapping.learn_native_category(
                platform, native_category, suggestion.category, suggestion.confidence
            )
            return suggestion.category

        logger.info(
            "Low confidence (%.2f) mapping %s category '%s'; using other",
            suggestion.confidence,
            platform,
            native_category,
        )
        return TransactionCategory.OTHER

    def generate_platform_mapping(
        self,
        platform: str,
        native_categories: list[str],
        samples: dict[str, list[tuple[str, str]]] | None = None,
    ) -> dict[str, TransactionCategory]:
        """Map every label of a platform. Returns {native label: category}."""
        samples = samples or {}
        return {
            native: self.map_category(platform, native, samples.get(native))
            for native in native_categories
        }
