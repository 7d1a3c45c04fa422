"""
Standard category taxonomy: native vocabularies and keyword rules.

The keyword table is evaluated in TransactionCategory declaration order, so
an earlier category wins when a description matches several.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from ..schemas.transaction import Platform, TransactionCategory

# Taxonomy version for cache invalidation; bump when rules change
TAXONOMY_VERSION = "2024.2"

# Keywords this short only match whole words (plus a plural or "-al"/"-er" ending)
SHORT_KEYWORD_LENGTH = 4

STANDARD_NATIVE_NAMES: dict[TransactionCategory, dict[str, str]] = {
    TransactionCategory.RENT: {
        Platform.DOORLOOP.value: "Rent Income",
        Platform.MERCURY.value: "Rental Income",
    },
    TransactionCategory.MAINTENANCE: {
        Platform.DOORLOOP.value: "Repairs & Maintenance",
        Platform.MERCURY.value: "Maintenance Expense",
    },
    TransactionCategory.UTILITIES: {
        Platform.DOORLOOP.value: "Utilities",
        Platform.MERCURY.value: "Utility Payments",
    },
    TransactionCategory.INSURANCE: {
        Platform.DOORLOOP.value: "Insurance",
        Platform.MERCURY.value: "Insurance Expense",
    },
    TransactionCategory.TAXES: {
        Platform.DOORLOOP.value: "Property Taxes",
        Platform.MERCURY.value: "Tax Payment",
    },
    TransactionCategory.MORTGAGE: {
        Platform.DOORLOOP.value: "Mortgage Payment",
        Platform.MERCURY.value: "Loan Payment",
    },
    TransactionCategory.SUPPLIES: {
        Platform.DOORLOOP.value: "Office Supplies",
        Platform.MERCURY.value: "Supplies",
    },
    TransactionCategory.CLEANING: {
        Platform.DOORLOOP.value: "Cleaning",
        Platform.MERCURY.value: "Cleaning Services",
    },
    TransactionCategory.MARKETING: {
        Platform.DOORLOOP.value: "Marketing",
        Platform.MERCURY.value: "Advertising",
    },
    TransactionCategory.OTHER: {
        Platform.DOORLOOP.value: "Other Expenses",
        Platform.MERCURY.value: "Other",
    },
}

# Wave's chart of accounts uses the capitalized canonical names
for _category, _names in STANDARD_NATIVE_NAMES.items():
    _names[Platform.WAVE.value] = _category.value.capitalize()


@lru_cache(maxsize=None)
def _short_keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}(?:s|es|al|als|er|ers)?\b")


def contains_keyword(text: str, keyword: str) -> bool:
    """Substring match; short keywords must stand as their own word.

    "rent" matches "Rental income" but not "current"; "tax" matches
    "taxes" but not "taxi".
    """
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        return _short_keyword_pattern(keyword).search(text) is not None
    return keyword in text


@dataclass(frozen=True)
class KeywordRule:
    """Keyword rules for one category."""

    category: TransactionCategory
    description_keywords: tuple[str, ...] = ()
    vendor_keywords: tuple[str, ...] = ()

    def matches(self, description: str, vendor: str) -> bool:
        """Both inputs must already be lowercased."""
        if any(contains_keyword(description, keyword) for keyword in self.description_keywords):
            return True
        if vendor and any(contains_keyword(vendor, keyword) for keyword in self.vendor_keywords):
            return True
        return False


KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(TransactionCategory.RENT, ("rent", "lease payment")),
    KeywordRule(
        TransactionCategory.MAINTENANCE,
        ("repair", "maintenance", "plumbing", "hvac"),
        ("home depot", "lowe"),
    ),
    KeywordRule(
        TransactionCategory.UTILITIES,
        ("utility", "electric", "gas", "water"),
        ("utility", "electric", "energy"),
    ),
    KeywordRule(TransactionCategory.INSURANCE, ("insurance",)),
    KeywordRule(TransactionCategory.TAXES, ("tax",)),
    KeywordRule(TransactionCategory.MORTGAGE, ("mortgage", "loan payment")),
    KeywordRule(TransactionCategory.SUPPLIES, ("supply", "office"), ("staples", "amazon")),
    KeywordRule(TransactionCategory.CLEANING, ("clean",), ("cleaning",)),
    KeywordRule(
        TransactionCategory.MARKETING,
        ("marketing", "advertising"),
        ("facebook", "google ads"),
    ),
)

CATEGORY_DESCRIPTIONS: dict[TransactionCategory, str] = {
    TransactionCategory.RENT: "Income from tenants for property rental",
    TransactionCategory.MAINTENANCE: "Repairs, renovations, and general property upkeep",
    TransactionCategory.UTILITIES: "Electricity, water, gas, internet, etc.",
    TransactionCategory.INSURANCE: "Property, liability, and other insurance premiums",
    TransactionCategory.TAXES: "Property taxes, income taxes, and other tax payments",
    TransactionCategory.MORTGAGE: "Mortgage payments and loan interest",
    TransactionCategory.SUPPLIES: "Office supplies, cleaning supplies, and general supplies",
    TransactionCategory.CLEANING: "Cleaning services and janitorial costs",
    TransactionCategory.MARKETING: "Advertising, listing fees, and marketing costs",
    TransactionCategory.OTHER: "Any transaction that doesn't fit the above categories",
}


def keyword_category(description: str | None, vendor: str | None = None) -> TransactionCategory:
    """
    Classify by keyword table.

    Returns:
        First matching category in table order, or OTHER
    """
    desc = (description or "").lower()
    vend = (vendor or "").lower()
    for rule in KEYWORD_RULES:
        if rule.matches(desc, vend):
            return rule.category
    return TransactionCategory.OTHER


def normalize_native_name(value: str) -> str:
    """Normalize a native category string for lookups."""
    return " ".join(value.replace("_", " ").split()).lower()
