"""Cross-platform reconciliation.

For a period (default: the current calendar month) the engine:
- Totals the canonical store and each platform's live transactions
- Pairs canonical and platform transactions with the matching engine
- Reports every transaction without a counterpart, and every pair whose
  signed amounts differ
- Reports duplicate records inside one platform's period
- Persists the report

A failing platform is recorded in the report's errors; the report is still
produced from whatever could be fetched.
"""

from __future__ import annotations

import calendar
import logging
import sqlite3
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..errors import ConnectorError
from ..matching.engine import TransactionMatcher
from ..schemas.dedupe import compute_transaction_hash
from ..schemas.transaction import NativeTransaction, Platform, Transaction, utcnow

if TYPE_CHECKING:
    from ..connectors import SourceConnector
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

CANONICAL = "canonical"
DEFAULT_PLATFORMS = (Platform.DOORLOOP.value, Platform.MERCURY.value, Platform.WAVE.value)


@dataclass
class Discrepancy:
    """A transaction without a counterpart, or a matched pair with a variance."""

    platform: str
    description: str
    amount: Decimal
    matched: bool
    date: date
    note: str = ""
    side: str = CANONICAL  # "canonical" or the platform key

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "description": self.description,
            "amount": str(self.amount),
            "matched": self.matched,
            "date": self.date.isoformat(),
            "note": self.note,
            "side": self.side,
        }


@dataclass
class DuplicateGroup:
    """Records of one platform sharing amount, date and description."""

    platform: str
    key: str
    amount: Decimal
    date: date
    description: str
    external_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "key": self.key,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "description": self.description,
            "external_ids": self.external_ids,
            "count": len(self.external_ids),
        }


@dataclass
class ReconciliationReport:
    period_start: date
    period_end: date
    totals: dict[str, Decimal] = field(default_factory=dict)
    discrepancies: list[Discrepancy] = field(default_factory=list)
    duplicates: list[DuplicateGroup] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)
    duration_ms: int = 0
    id: int | None = None

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def unmatched(self) -> list[Discrepancy]:
        return [d for d in self.discrepancies if not d.matched]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "totals": {platform: str(total) for platform, total in self.totals.items()},
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "errors": self.errors,
            "generated_at": self.generated_at.isoformat(),
            "duration_ms": self.duration_ms,
        }


def month_period(day: date) -> tuple[date, date]:
    """First and last day of the month containing ``day``."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


class ReconciliationEngine:
    """Builds reconciliation reports across platforms.

    Args:
        state_store: Canonical store; reports are saved here too.
        connector_factory: Builds a connector for ``(platform, credential)``.
        matcher: Transaction matcher (date tolerance, token overlap).
        platforms: Platforms reconciled when the caller names none.
    """

    def __init__(
        self,
        state_store: StateStore,
        connector_factory: Callable[[str, str | None], SourceConnector],
        matcher: TransactionMatcher | None = None,
        platforms: Iterable[str] = DEFAULT_PLATFORMS,
    ) -> None:
        self.store = state_store
        self.connector_factory = connector_factory
        self.matcher = matcher or TransactionMatcher()
        self.platforms = tuple(platforms)

    def reconcile(
        self,
        period: tuple[date, date] | None = None,
        platforms: Iterable[str] | None = None,
        credentials: dict[str, str] | None = None,
        save: bool = True,
    ) -> ReconciliationReport:
        """
        Reconcile the canonical store against each platform for a period.

        Args:
            period: Inclusive (start, end); defaults to the current month.
            platforms: Platform keys; defaults to the engine's platforms.
            credentials: Per-platform API keys overriding the configured ones.
            save: Persist the report.

        Returns:
            ReconciliationReport, partial if some platforms failed.
        """
        start_time = time.time()
        period_start, period_end = period or month_period(date.today())
        platforms = list(platforms) if platforms is not None else list(self.platforms)
        credentials = credentials or {}

        report = ReconciliationReport(period_start=period_start, period_end=period_end)

        canonical = self.store.get_transactions_by_date_range(period_start, period_end)
        report.totals[CANONICAL] = sum((tx.amount for tx in canonical), Decimal("0"))

        for platform in platforms:
            try:
                natives = self._fetch_period(platform, credentials.get(platform), report)
            except ConnectorError as e:
                logger.warning("Reconciliation of %s failed: %s", platform, e)
                report.errors.append(f"{platform}: {e}")
                continue

            report.totals[platform] = sum((tx.amount for tx in natives), Decimal("0"))
            report.discrepancies.extend(self._compare(platform, canonical, natives))
            report.duplicates.extend(find_duplicates(platform, natives))

        report.duration_ms = int((time.time() - start_time) * 1000)

        if save:
            try:
                report.id = self.store.save_reconciliation_report(
                    period_start, period_end, report.to_dict()
                )
            except sqlite3.Error as e:
                logger.error("Could not save reconciliation report: %s", e)
                report.errors.append(f"save failed: {e}")

        logger.info(
            "Reconciliation %s..%s: %d discrepancies (%d unmatched), %d duplicate groups, %d errors",
            period_start,
            period_end,
            len(report.discrepancies),
            len(report.unmatched),
            len(report.duplicates),
            len(report.errors),
        )
        return report

    def _fetch_period(
        self, platform: str, credential: str | None, report: ReconciliationReport
    ) -> list[NativeTransaction]:
        """All of a platform's transactions inside the report period."""
        since = datetime(
            report.period_start.year,
            report.period_start.month,
            report.period_start.day,
            tzinfo=timezone.utc,
        )
        natives: list[NativeTransaction] = []
        connector = self.connector_factory(platform, credential)
        try:
            for account in connector.list_accounts():
                fetched = connector.fetch_transactions(account, since)
                for malformed in fetched.malformed:
                    report.errors.append(f"{platform} account {account.external_id}: {malformed}")
                natives.extend(
                    tx
                    for tx in fetched.transactions
                    if report.period_start <= tx.date <= report.period_end
                )
        finally:
            connector.close()
        return natives

    def _compare(
        self,
        platform: str,
        canonical: list[Transaction],
        natives: list[NativeTransaction],
    ) -> list[Discrepancy]:
        pairs, canonical, natives = pair_by_source(platform, canonical, natives)
        outcome = self.matcher.match(canonical, natives)
        pairs.extend((pair.left, pair.right) for pair in outcome.pairs)
        discrepancies: list[Discrepancy] = []

        for tx, native in pairs:
            if tx.amount == native.amount:
                continue
            discrepancies.append(
                Discrepancy(
                    platform=platform,
                    description=tx.description,
                    amount=tx.amount,
                    matched=True,
                    date=tx.date,
                    note=(
                        f"variance: canonical {tx.amount} vs "
                        f"{platform} {native.amount} ({native.id})"
                    ),
                )
            )

        for tx in outcome.unmatched_left:
            discrepancies.append(
                Discrepancy(
                    platform=platform,
                    description=tx.description,
                    amount=tx.amount,
                    matched=False,
                    date=tx.date,
                    note=f"no {platform} counterpart for canonical transaction {tx.id}",
                )
            )

        for native in outcome.unmatched_right:
            discrepancies.append(
                Discrepancy(
                    platform=platform,
                    description=native.description,
                    amount=native.amount,
                    matched=False,
                    date=native.date,
                    note=f"{platform} record {native.id} missing from canonical store",
                    side=platform,
                )
            )
        return discrepancies


def pair_by_source(
    platform: str,
    canonical: list[Transaction],
    natives: list[NativeTransaction],
) -> tuple[list[tuple[Transaction, NativeTransaction]], list[Transaction], list[NativeTransaction]]:
    """Pair stored rows with the platform records they were ingested from.

    Returns the pairs plus the canonical rows and records left over for
    fuzzy matching.
    """
    by_id = {
        tx.external_id: tx
        for tx in canonical
        if tx.external_source == platform and tx.external_id
    }
    pairs: list[tuple[Transaction, NativeTransaction]] = []
    rest: list[NativeTransaction] = []
    for native in natives:
        tx = by_id.pop(native.id, None)
        if tx is None:
            rest.append(native)
        else:
            pairs.append((tx, native))

    paired = {id(tx) for tx, _ in pairs}
    return pairs, [tx for tx in canonical if id(tx) not in paired], rest


def find_duplicates(platform: str, natives: list[NativeTransaction]) -> list[DuplicateGroup]:
    """Group records sharing amount, date and description."""
    groups: dict[str, list[NativeTransaction]] = defaultdict(list)
    for native in natives:
        groups[compute_transaction_hash(native.amount, native.date, native.description)].append(native)

    duplicates = []
    for key, members in groups.items():
        if len(members) < 2:
            continue
        first = members[0]
        duplicates.append(
            DuplicateGroup(
                platform=platform,
                key=key,
                amount=first.amount,
                date=first.date,
                description=first.description,
                external_ids=[m.id for m in members],
            )
        )
    return duplicates
