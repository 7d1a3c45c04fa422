"""Prompt templates for LLM-assisted categorization.

Prompts are versioned to support cache invalidation.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..categorization.taxonomy import CATEGORY_DESCRIPTIONS

# Prompt version for cache invalidation
# v2.0: property-management taxonomy with income/expense type
PROMPT_VERSION = "v2.0"


def _category_list() -> str:
    return "\n".join(
        f"- {category.value} ({description})"
        for category, description in CATEGORY_DESCRIPTIONS.items()
    )


@dataclass
class CategoryPrompt:
    """Prompt template for classifying one transaction.

    Attributes:
        version: Prompt version for cache invalidation.
        system_prompt: System message setting LLM behavior.
        user_template: Template for user message with placeholders.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial assistant specializing in property management accounting.
Your task is to accurately categorize financial transactions.

Rules:
1. Only use categories from the provided list
2. If uncertain, use "other" and a low confidence
3. Decide whether the transaction is income or expense
4. Include a confidence score from 0.0 to 1.0

Respond in JSON format:
{
    "category": "category_name",
    "type": "income_or_expense",
    "confidence": 0.85,
    "reason": "Brief explanation"
}"""

    user_template: str = """Categorize this financial transaction for a property management company.

Transaction: {description}
Amount: {amount}
Vendor: {vendor}

Assign one of these categories:
{categories}

Provide your answer in JSON format."""

    def format_user_message(
        self,
        description: str,
        amount: str,
        vendor: str | None,
    ) -> str:
        """Format the user message with transaction details."""
        return self.user_template.format(
            description=description or "No description",
            amount=amount,
            vendor=vendor or "Unknown",
            categories=_category_list(),
        )


@dataclass
class MappingRulePrompt:
    """Prompt template for mapping an external category name to the taxonomy."""

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial systems integration specialist.
Your task is to create accurate mappings between different accounting systems.

Respond in JSON format:
{
    "category": "category_name",
    "confidence": 0.85,
    "reason": "brief explanation of mapping logic"
}"""

    user_template: str = """Create a mapping rule between an external financial system's category and our standard categories.

External System: {platform}
External Category: {native_category}
{samples}
Our standard categories are:
{categories}"""

    def format_user_message(
        self,
        platform: str,
        native_category: str,
        samples: list[tuple[str, str]] | None = None,
    ) -> str:
        """Format the user message.

        Args:
            platform: External system name.
            native_category: The external category label.
            samples: Up to five (description, amount) examples.
        """
        sample_text = ""
        if samples:
            lines = "\n".join(f'- "{desc}" for {amount}' for desc, amount in samples[:5])
            sample_text = f"Sample transactions in this category:\n{lines}\n"
        return self.user_template.format(
            platform=platform,
            native_category=native_category,
            samples=sample_text,
            categories=_category_list(),
        )
