"""
Category mapping table.

Translates each platform's native category vocabulary into the canonical
taxonomy and caches ledger account ids discovered per category.

The table is an ordinary object handed to whoever needs it. Mutable state
(discovered account ids, learned native names) lives behind a MappingStore
whose upsert is atomic per (category, platform) entry, so account discovery
for one platform can never overwrite another platform's id for the same
category.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from ..schemas.transaction import CategoryMappingEntry, TransactionCategory
from .taxonomy import STANDARD_NATIVE_NAMES, normalize_native_name

logger = logging.getLogger(__name__)


class MappingStore(Protocol):
    """Key-value storage for the mutable part of the mapping table.

    StateStore implements this protocol against SQLite.
    """

    def upsert_ledger_account_id(self, category: str, platform: str, account_id: str) -> None: ...

    def get_ledger_account_id(self, category: str, platform: str) -> str | None: ...

    def get_ledger_account_ids(self) -> dict[str, dict[str, str]]: ...

    def save_native_category_rule(
        self, platform: str, native_category: str, category: str, confidence: float
    ) -> None: ...

    def get_native_category_rules(self) -> dict[tuple[str, str], str]: ...


class InMemoryMappingStore:
    """Process-local MappingStore guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._account_ids: dict[tuple[str, str], str] = {}
        self._rules: dict[tuple[str, str], tuple[str, float]] = {}

    def upsert_ledger_account_id(self, category: str, platform: str, account_id: str) -> None:
        with self._lock:
            self._account_ids[(category, platform)] = account_id

    def get_ledger_account_id(self, category: str, platform: str) -> str | None:
        with self._lock:
            return self._account_ids.get((category, platform))

    def get_ledger_account_ids(self) -> dict[str, dict[str, str]]:
        with self._lock:
            items = list(self._account_ids.items())
        result: dict[str, dict[str, str]] = {}
        for (category, platform), account_id in items:
            result.setdefault(category, {})[platform] = account_id
        return result

    def save_native_category_rule(
        self, platform: str, native_category: str, category: str, confidence: float
    ) -> None:
        with self._lock:
            self._rules[(platform, native_category)] = (category, confidence)

    def get_native_category_rules(self) -> dict[tuple[str, str], str]:
        with self._lock:
            return {key: value[0] for key, value in self._rules.items()}


class CategoryMappingTable:
    """Native vocabulary lookups plus discovered ledger account ids.

    Args:
        store: Backing store for mutable entries. Defaults to an
            InMemoryMappingStore, which is what tests use.
        native_names: Override of the static vocabulary (category ->
            {platform: native string}).
    """

    def __init__(
        self,
        store: MappingStore | None = None,
        native_names: dict[TransactionCategory, dict[str, str]] | None = None,
    ) -> None:
        self.store: MappingStore = store if store is not None else InMemoryMappingStore()
        self._native_names = {
            category: dict(names)
            for category, names in (native_names or STANDARD_NATIVE_NAMES).items()
        }
        self._static_index: dict[tuple[str, str], TransactionCategory] = {}
        for category, names in self._native_names.items():
            for platform, native in names.items():
                self._static_index[(platform, normalize_native_name(native))] = category

    def lookup(self, platform: str | None, native_category: str | None) -> TransactionCategory | None:
        """
        Resolve a platform's native category string.

        Matching is case and whitespace insensitive. The canonical category
        name itself is accepted on every platform. Learned rules are consulted
        after the static vocabulary.

        Returns:
            Canonical category, or None if the string is unknown
        """
        if not native_category or not native_category.strip():
            return None
        normalized = normalize_native_name(native_category)

        if platform:
            category = self._static_index.get((platform, normalized))
            if category is not None:
                return category

        canonical = TransactionCategory.parse(normalized)
        if canonical is not None:
            return canonical

        if platform:
            learned = self.store.get_native_category_rules().get((platform, normalized))
            if learned:
                return TransactionCategory.parse(learned)
        return None

    def native_name(self, category: TransactionCategory, platform: str) -> str | None:
        return self._native_names.get(category, {}).get(platform)

    def learn_native_category(
        self,
        platform: str,
        native_category: str,
        category: TransactionCategory,
        confidence: float,
    ) -> None:
        """Persist a learned mapping for a native string not in the vocabulary."""
        normalized = normalize_native_name(native_category)
        self.store.save_native_category_rule(platform, normalized, category.value, confidence)
        logger.info(
            "Learned %s category '%s' -> %s (confidence %.2f)",
            platform,
            native_category,
            category.value,
            confidence,
        )

    def record_ledger_account(
        self, category: TransactionCategory, platform: str, account_id: str
    ) -> None:
        """Atomically record the account id for one (category, platform) entry."""
        self.store.upsert_ledger_account_id(category.value, platform, account_id)
        logger.debug("Mapped %s on %s to account %s", category.value, platform, account_id)

    def ledger_account_id(self, category: TransactionCategory, platform: str) -> str | None:
        return self.store.get_ledger_account_id(category.value, platform)

    def match_account_name(self, account_name: str | None) -> TransactionCategory | None:
        """
        Match a ledger account name to a category by substring.

        "Rent Income" -> rent, "Repairs and Maintenance" -> maintenance.
        Categories are tried in taxonomy order; OTHER is never inferred.
        """
        if not account_name:
            return None
        lowered = account_name.lower()
        for category in TransactionCategory:
            if category is TransactionCategory.OTHER:
                continue
            if category.value in lowered:
                return category
        return None

    def entries(self) -> list[CategoryMappingEntry]:
        """Snapshot of the full table."""
        discovered = self.store.get_ledger_account_ids()
        return [
            CategoryMappingEntry(
                category=category,
                native_names=dict(self._native_names.get(category, {})),
                ledger_account_ids=dict(discovered.get(category.value, {})),
            )
            for category in TransactionCategory
        ]
