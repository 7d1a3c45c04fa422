"""Transaction ingestion pipeline.

Pulls transactions from a source platform, resolves their category and
persists them as canonical transactions.

Guarantees:
- Re-ingesting a record is a no-op (unique natural key in the store)
- A missing or rejected credential fails the whole platform run
- Any other failure is isolated to its item or account and counted
- An account's sync cursor only moves forward, and only after its batch
  was fetched and stored completely
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..categorization.resolver import CategoryResolver, Resolution, ResolutionSource
from ..errors import ConnectorError, CredentialError, LedgerHubError, PersistenceConflict
from ..schemas.transaction import (
    ExternalAccount,
    NativeTransaction,
    Platform,
    Transaction,
    TransactionCategory,
    TransactionType,
)

if TYPE_CHECKING:
    from ..connectors import SourceConnector
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[str, "str | None"], "SourceConnector"]


@dataclass
class SyncResult:
    """Result of syncing one platform."""

    platform: str
    accounts_processed: int = 0
    imported: int = 0
    categorized: int = 0
    mapped: int = 0
    skipped: int = 0  # Already stored
    failed: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True if sync completed without errors."""
        return len(self.errors) == 0

    def merge(self, other: SyncResult) -> None:
        self.accounts_processed += other.accounts_processed
        self.imported += other.imported
        self.categorized += other.categorized
        self.mapped += other.mapped
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "accounts_processed": self.accounts_processed,
            "imported": self.imported,
            "categorized": self.categorized,
            "mapped": self.mapped,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
        }


class IngestionPipeline:
    """Syncs source platforms into the canonical transaction store.

    Args:
        state_store: Canonical store (shared by all workers).
        resolver: Category resolver.
        connector_factory: Builds a connector for ``(platform, credential)``.
        max_workers: Concurrent accounts per platform.
    """

    def __init__(
        self,
        state_store: StateStore,
        resolver: CategoryResolver,
        connector_factory: ConnectorFactory,
        max_workers: int = 4,
    ) -> None:
        self.store = state_store
        self.resolver = resolver
        self.connector_factory = connector_factory
        self.max_workers = max(1, max_workers)
        self._account_locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _account_lock(self, platform: str, account_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._account_locks.setdefault((platform, account_id), threading.Lock())

    def sync(self, platform: str, credential: str | None = None) -> SyncResult:
        """
        Sync every account of one platform.

        Args:
            platform: Platform key.
            credential: API key overriding the configured one.

        Returns:
            SyncResult with aggregate counters.

        Raises:
            CredentialError: Credential missing or rejected.
        """
        start_time = time.time()
        result = SyncResult(platform=platform)
        connector = self.connector_factory(platform, credential)

        try:
            check = connector.validate_credentials()
            if not check.success:
                raise CredentialError(check.message or "credential rejected", platform)

            accounts = connector.list_accounts()
            logger.info("Syncing %d %s account(s)", len(accounts), platform)

            workers = min(self.max_workers, len(accounts)) or 1
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"sync-{platform}") as pool:
                futures = [
                    pool.submit(self._sync_account, connector, platform, account)
                    for account in accounts
                ]
                for future in as_completed(futures):
                    result.merge(future.result())

        except CredentialError:
            logger.error("Credential failure for %s; aborting platform sync", platform)
            raise
        except ConnectorError as e:
            logger.warning("Sync of %s stopped: %s", platform, e)
            result.errors.append(str(e))
        finally:
            connector.close()

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Sync %s completed: %d imported, %d categorized, %d mapped, %d skipped, "
            "%d failed, %d errors in %dms",
            platform,
            result.imported,
            result.categorized,
            result.mapped,
            result.skipped,
            result.failed,
            len(result.errors),
            result.duration_ms,
        )
        return result

    def sync_all(
        self,
        platforms: Iterable[str],
        credentials: dict[str, str] | None = None,
    ) -> dict[str, SyncResult]:
        """Sync independent platforms concurrently.

        A credential failure is recorded in that platform's result instead of
        being raised, so the other platforms still finish.
        """
        platforms = list(dict.fromkeys(platforms))
        credentials = credentials or {}
        results: dict[str, SyncResult] = {}
        if not platforms:
            return results

        with ThreadPoolExecutor(max_workers=len(platforms), thread_name_prefix="sync") as pool:
            futures = {
                pool.submit(self.sync, platform, credentials.get(platform)): platform
                for platform in platforms
            }
            for future in as_completed(futures):
                platform = futures[future]
                try:
                    results[platform] = future.result()
                except CredentialError as e:
                    results[platform] = SyncResult(platform=platform, errors=[str(e)])
        return {platform: results[platform] for platform in platforms}

    def _sync_account(
        self, connector: SourceConnector, platform: str, account: ExternalAccount
    ) -> SyncResult:
        """Sync one account; only CredentialError escapes."""
        result = SyncResult(platform=platform)
        label = f"{platform} account {account.external_id}"

        with self._account_lock(platform, account.external_id):
            try:
                self.store.upsert_account(account)
                since = self.store.get_last_sync(platform, account.external_id)
                fetched = connector.fetch_transactions(account, since)
            except CredentialError:
                raise
            except (ConnectorError, sqlite3.Error) as e:
                logger.warning("Skipping %s: %s", label, e)
                result.errors.append(f"{label}: {e}")
                return result

            result.accounts_processed = 1
            for malformed in fetched.malformed:
                result.failed += 1
                result.errors.append(f"{label}: {malformed}")

            newest: datetime | None = None
            for native in fetched.transactions:
                try:
                    self._ingest(platform, native, result)
                except (LedgerHubError, sqlite3.Error, ValueError) as e:
                    logger.warning("Failed to store %s transaction %s: %s", platform, native.id, e)
                    result.failed += 1
                    result.errors.append(f"{platform} transaction {native.id}: {e}")
                    continue
                if newest is None or native.timestamp > newest:
                    newest = native.timestamp

            persisted_all = result.failed == len(fetched.malformed)
            if newest is not None and persisted_all:
                self.store.advance_sync_cursor(platform, account.external_id, newest)
            elif newest is not None:
                logger.info("Not advancing cursor for %s: some transactions failed", label)

        return result

    def _ingest(self, platform: str, native: NativeTransaction, result: SyncResult) -> None:
        """Resolve and store one native transaction, updating counters."""
        # Cheap pre-check; the unique index is what actually guarantees idempotency
        if self.store.get_transaction_by_external_id(native.id, platform) is not None:
            result.skipped += 1
            return

        resolution = self.resolver.resolve(
            native.description,
            native.amount,
            vendor=native.vendor,
            platform=platform,
            native_category=native.native_category,
            direction=native.direction,
        )
        transaction = self._to_transaction(platform, native, resolution)

        try:
            self.store.create_transaction(transaction)
        except PersistenceConflict:
            # Another worker stored it first
            result.skipped += 1
            return

        result.imported += 1
        if resolution.counts_as_categorized:
            result.categorized += 1
        if resolution.source == ResolutionSource.MAPPING:
            result.mapped += 1

    @staticmethod
    def _to_transaction(
        platform: str, native: NativeTransaction, resolution: Resolution
    ) -> Transaction:
        is_ai = resolution.source == ResolutionSource.AI
        return Transaction(
            amount=native.amount,
            date=native.date,
            description=native.description,
            category=resolution.category,
            type=resolution.type,
            external_id=native.id,
            external_source=platform,
            property_id=native.property_id,
            ai_categorized=resolution.ai_categorized,
            ai_confidence=resolution.confidence if is_ai else 0.0,
            metadata={
                "native": native.raw,
                "native_category": native.native_category,
                "vendor": native.vendor,
                "resolution": {
                    "source": resolution.source.value,
                    "confidence": resolution.confidence,
                    "accepted": resolution.accepted,
                },
            },
        )

    def record_manual_transaction(
        self,
        amount: Decimal,
        tx_date: date,
        description: str,
        category: TransactionCategory | None = None,
        type_: TransactionType | None = None,
        property_id: str | None = None,
        created_by: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Store a manually entered transaction.

        Manual entries are exempt from the natural-key uniqueness rule. A
        missing category is resolved like an ingested transaction.
        """
        amount = Decimal(amount)
        ai_categorized = False
        ai_confidence = 0.0
        if category is None:
            resolution = self.resolver.resolve(description, amount, direction=type_)
            category = resolution.category
            type_ = resolution.type
            ai_categorized = resolution.ai_categorized
            if resolution.source == ResolutionSource.AI:
                ai_confidence = resolution.confidence
        elif type_ is None:
            type_ = TransactionType.from_amount(amount)

        return self.store.create_transaction(
            Transaction(
                amount=amount,
                date=tx_date,
                description=description,
                category=category,
                type=type_,
                external_id=None,
                external_source=Platform.MANUAL.value,
                property_id=property_id,
                ai_categorized=ai_categorized,
                ai_confidence=ai_confidence,
                metadata=metadata or {},
                created_by=created_by,
            )
        )
