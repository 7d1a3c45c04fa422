"""AI classifier adapter for LLM-assisted transaction categorization."""

from ledger_hub.ai_classifier.prompts import CategoryPrompt, MappingRulePrompt
from ledger_hub.ai_classifier.service import (
    AIClassifier,
    Classification,
    MappingSuggestion,
    parse_json_response,
)

__all__ = [
    "AIClassifier",
    "CategoryPrompt",
    "Classification",
    "MappingRulePrompt",
    "MappingSuggestion",
    "parse_json_response",
]
