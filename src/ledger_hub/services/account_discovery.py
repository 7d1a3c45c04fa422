"""
Ledger account discovery.

Lists the primary ledger's chart of accounts and records, per canonical
category, which ledger account pushed transactions should post to. Account
names are matched to categories by substring ("Rent Income" -> rent).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..schemas.transaction import LEDGER_PLATFORM

if TYPE_CHECKING:
    from ..categorization.mapping import CategoryMappingTable
    from ..connectors import SourceConnector

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    accounts_found: int = 0
    accounts_mapped: int = 0
    # category -> ledger account id
    mappings: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts_found": self.accounts_found,
            "accounts_mapped": self.accounts_mapped,
            "mappings": dict(self.mappings),
        }


class AccountDiscovery:
    """Maps ledger accounts onto canonical categories.

    The first account matching a category wins; later matches for the same
    category are logged and ignored.
    """

    def __init__(
        self,
        ledger: SourceConnector,
        mapping: CategoryMappingTable,
        platform: str = LEDGER_PLATFORM.value,
    ):
        self.ledger = ledger
        self.mapping = mapping
        self.platform = platform

    def discover(self) -> DiscoveryResult:
        """
        Discover ledger accounts and record their ids in the mapping table.

        Raises:
            ConnectorError: If the ledger cannot be listed.
        """
        result = DiscoveryResult()
        accounts = self.ledger.list_accounts()
        result.accounts_found = len(accounts)

        for account in accounts:
            category = self.mapping.match_account_name(account.name)
            if category is None:
                continue
            if category.value in result.mappings:
                logger.debug(
                    "Ignoring %s account '%s' for %s (already mapped)",
                    self.platform,
                    account.name,
                    category.value,
                )
                continue

            self.mapping.record_ledger_account(category, self.platform, account.external_id)
            result.mappings[category.value] = account.external_id
            result.accounts_mapped += 1

        logger.info(
            "Discovered %d %s account(s), mapped %d categories",
            result.accounts_found,
            self.platform,
            result.accounts_mapped,
        )
        return result
