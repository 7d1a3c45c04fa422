"""Outbound push of canonical transactions to the primary ledger (Wave).

Every push is isolated: a failing transaction is counted and logged, and
the run continues. Each transaction carries a deterministic idempotency key;
keys of successful pushes are recorded in the push log, so repeated runs
over overlapping date ranges skip what the ledger already has.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from ..errors import ConnectorError, CredentialError
from ..schemas.ledger_payload import (
    LedgerTransactionPayload,
    build_ledger_payload,
    validate_ledger_payload,
)
from ..schemas.transaction import LEDGER_PLATFORM, Transaction

if TYPE_CHECKING:
    from ..categorization.mapping import CategoryMappingTable
    from ..connectors.base import CredentialCheck
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_PUSH_DAYS = 30


class LedgerWriter(Protocol):
    """What the push engine needs from the ledger connector."""

    def validate_credentials(self, key: str | None = None) -> CredentialCheck: ...

    def create_transaction(self, payload: LedgerTransactionPayload) -> str: ...


@dataclass
class PushResult:
    """Result of a push run."""

    total_pushed: int = 0
    errors: int = 0
    skipped: int = 0  # Already pushed earlier
    error_details: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_pushed": self.total_pushed,
            "errors": self.errors,
            "skipped": self.skipped,
            "error_details": self.error_details,
            "duration_ms": self.duration_ms,
        }


class PushEngine:
    """Pushes canonical transactions to the ledger.

    Args:
        state_store: Canonical store and push log.
        mapping: Category mapping table (ledger account ids per category).
        ledger_factory: Builds the ledger writer for an optional credential.
        business_id: Ledger business receiving the transactions.
        push_days: Default window when no date range is given.
    """

    def __init__(
        self,
        state_store: StateStore,
        mapping: CategoryMappingTable,
        ledger_factory: Callable[[str | None], LedgerWriter],
        business_id: str,
        push_days: int = DEFAULT_PUSH_DAYS,
    ) -> None:
        self.store = state_store
        self.mapping = mapping
        self.ledger_factory = ledger_factory
        self.business_id = business_id
        self.push_days = push_days

    def _select(self, date_range: tuple[date, date] | None) -> list[Transaction]:
        if date_range is None:
            end = date.today()
            start = end - timedelta(days=self.push_days)
        else:
            start, end = date_range
        return self.store.get_transactions_by_date_range(
            start, end, exclude_source=LEDGER_PLATFORM.value
        )

    def push(
        self,
        credential: str | None = None,
        date_range: tuple[date, date] | None = None,
        transactions: list[Transaction] | None = None,
        force: bool = False,
    ) -> PushResult:
        """
        Push transactions to the ledger.

        Args:
            credential: Ledger API token overriding the configured one.
            date_range: Inclusive (start, end); defaults to the last 30 days.
            transactions: Explicit list; replaces the date range selection.
            force: Push again even when the push log has the key.

        Returns:
            PushResult with counters and per-item error details.

        Raises:
            CredentialError: Ledger credential or business id missing or rejected.
        """
        start_time = time.time()
        result = PushResult()

        if not self.business_id:
            raise CredentialError("ledger business id is not configured", LEDGER_PLATFORM.value)

        ledger = self.ledger_factory(credential)
        try:
            check = ledger.validate_credentials()
        except CredentialError:
            raise
        except ConnectorError as e:
            logger.warning(
                "Could not reach %s to validate credentials: %s", LEDGER_PLATFORM.value, e
            )
            result.errors += 1
            result.error_details.append(f"credential check: {e}")
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result
        if not check.success:
            raise CredentialError(check.message or "credential rejected", LEDGER_PLATFORM.value)

        selected = transactions if transactions is not None else self._select(date_range)
        logger.info("Pushing %d transaction(s) to %s", len(selected), LEDGER_PLATFORM.value)

        for transaction in selected:
            label = _label(transaction)
            try:
                payload = build_ledger_payload(
                    transaction,
                    self.business_id,
                    account_id=self.mapping.ledger_account_id(
                        transaction.category, LEDGER_PLATFORM.value
                    ),
                )
            except ValueError as e:
                result.errors += 1
                result.error_details.append(f"{label}: {e}")
                continue

            problems = validate_ledger_payload(payload)
            if problems:
                result.errors += 1
                result.error_details.append(f"{label}: {'; '.join(problems)}")
                continue

            push_key = payload.external_id
            if not force and self.store.is_pushed(push_key):
                result.skipped += 1
                continue

            try:
                ledger_id = ledger.create_transaction(payload)
            except CredentialError:
                raise
            except Exception as e:
                logger.warning("Failed to push %s: %s", label, e)
                result.errors += 1
                result.error_details.append(f"{label}: {e}")
                try:
                    self.store.record_push_failure(push_key, transaction.id, str(e))
                except sqlite3.Error as log_error:
                    logger.error("Could not record push failure for %s: %s", label, log_error)
                continue

            result.total_pushed += 1
            try:
                self.store.record_push_success(push_key, transaction.id, ledger_id)
            except sqlite3.Error as e:
                # Pushed, but the next run will submit it again under the same key
                logger.error("Could not record push of %s as %s: %s", label, ledger_id, e)
                result.error_details.append(f"{label}: pushed but not logged: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Push completed: %d pushed, %d skipped, %d errors in %dms",
            result.total_pushed,
            result.skipped,
            result.errors,
            result.duration_ms,
        )
        return result


def _label(transaction: Transaction) -> str:
    if transaction.id is not None:
        return f"transaction {transaction.id}"
    return f"{transaction.external_source}:{transaction.external_id}"
