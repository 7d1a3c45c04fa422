"""
SQLite-based state store implementation.

Tables:
- transactions: Canonical transactions (unique natural key for non-manual rows)
- external_accounts: Accounts seen on each platform
- sync_cursors: Per (platform, account) sync watermark
- category_account_ids: Discovered ledger account ids per category and platform
- native_category_rules: Learned native category strings
- llm_cache, push_log, reconciliation_reports: added by migrations
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import PersistenceConflict
from ..schemas.transaction import (
    ExternalAccount,
    Transaction,
    TransactionCategory,
    TransactionType,
)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC timestamp so string comparison orders correctly."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _now() -> str:
    return format_timestamp(datetime.now(timezone.utc))


class PushStatus(str, Enum):
    """Status of a ledger push attempt."""

    PUSHED = "PUSHED"
    FAILED = "FAILED"


@dataclass
class PushRecord:
    """Record of a push to the primary ledger."""

    push_key: str
    transaction_id: int | None
    ledger_transaction_id: str | None
    status: str
    error_message: str | None
    attempts: int
    created_at: str
    pushed_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PushRecord":
        """Create from database row."""
        return cls(
            push_key=row["push_key"],
            transaction_id=row["transaction_id"],
            ledger_transaction_id=row["ledger_transaction_id"],
            status=row["status"],
            error_message=row["error_message"],
            attempts=row["attempts"],
            created_at=row["created_at"],
            pushed_at=row["pushed_at"],
        )


def _transaction_from_row(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        amount=Decimal(row["amount"]),
        date=date.fromisoformat(row["date"]),
        description=row["description"],
        category=TransactionCategory(row["category"]),
        type=TransactionType(row["type"]),
        property_id=row["property_id"],
        external_id=row["external_id"],
        external_source=row["external_source"],
        ai_categorized=bool(row["ai_categorized"]),
        ai_confidence=row["ai_confidence"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        created_at=parse_timestamp(row["created_at"]),
        created_by=row["created_by"],
    )


def _account_from_row(row: sqlite3.Row) -> ExternalAccount:
    return ExternalAccount(
        platform=row["platform"],
        external_id=row["external_id"],
        name=row["name"],
        type=row["type"],
        balance=Decimal(row["balance"]),
        currency=row["currency"],
        last_synced_at=parse_timestamp(row["last_synced_at"]),
    )


class StateStore:
    """
    SQLite state store for LedgerHub.

    Manages:
    - Canonical transactions (idempotent insert via unique index)
    - External accounts and sync cursors
    - Ledger account ids discovered per category (atomic upsert)
    - LLM response cache
    - Push log (idempotency keys)
    - Reconciliation reports

    Every call opens its own connection, so the store can be shared between
    worker threads. Uniqueness is enforced by the database, never by
    read-then-write logic.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        try:
            # WAL lets ingestion workers read while another thread writes
            conn.execute("PRAGMA journal_mode = WAL")
        finally:
            conn.close()

        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    amount TEXT NOT NULL,
                    date TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    type TEXT NOT NULL,
                    property_id TEXT,
                    external_id TEXT,
                    external_source TEXT NOT NULL,
                    ai_categorized INTEGER NOT NULL DEFAULT 0,
                    ai_confidence REAL NOT NULL DEFAULT 0,
                    metadata TEXT,  -- JSON object
                    created_at TEXT NOT NULL,
                    created_by TEXT,
                    updated_at TEXT
                )
            """
            )

            # Natural key is unique among non-manual rows
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_natural_key
                ON transactions(external_id, external_source)
                WHERE external_source != 'manual' AND external_id IS NOT NULL
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS external_accounts (
                    platform TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL,
                    balance TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    last_synced_at TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (platform, external_id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_cursors (
                    platform TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    last_synced_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (platform, account_id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS category_account_ids (
                    category TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (category, platform)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS native_category_rules (
                    platform TEXT NOT NULL,
                    native_category TEXT NOT NULL,
                    category TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (platform, native_category)
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_source ON transactions(external_source)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Transaction methods

    def create_transaction(self, transaction: Transaction) -> int:
        """
        Insert a canonical transaction.

        Args:
            transaction: Transaction to store (id is ignored)

        Returns:
            Store-assigned id

        Raises:
            PersistenceConflict: A non-manual row with the same
                (external_id, external_source) already exists
        """
        created_at = transaction.created_at or datetime.now(timezone.utc)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO transactions
                    (amount, date, description, category, type, property_id,
                     external_id, external_source, ai_categorized, ai_confidence,
                     metadata, created_at, created_by)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        str(transaction.amount),
                        transaction.date.isoformat(),
                        transaction.description,
                        transaction.category.value,
                        transaction.type.value,
                        transaction.property_id,
                        transaction.external_id,
                        transaction.external_source,
                        int(transaction.ai_categorized),
                        float(transaction.ai_confidence),
                        json.dumps(transaction.metadata, default=str),
                        format_timestamp(created_at),
                        transaction.created_by,
                    ),
                )
                return int(cursor.lastrowid)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise PersistenceConflict(
                transaction.external_id or "", transaction.external_source
            ) from e

    def get_transaction(self, transaction_id: int) -> Transaction | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return _transaction_from_row(row) if row else None

    def get_transaction_by_external_id(
        self, external_id: str, external_source: str
    ) -> Transaction | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE external_id = ? AND external_source = ?",
                (external_id, external_source),
            ).fetchone()
            return _transaction_from_row(row) if row else None

    def get_transactions_by_date_range(
        self,
        start: date,
        end: date,
        property_id: str | None = None,
        exclude_source: str | None = None,
        source: str | None = None,
    ) -> list[Transaction]:
        """
        Get transactions with start <= date <= end.

        Args:
            start: First day (inclusive)
            end: Last day (inclusive)
            property_id: Only rows for this property
            exclude_source: Skip rows from this platform
            source: Only rows from this platform
        """
        query = "SELECT * FROM transactions WHERE date >= ? AND date <= ?"
        params: list[Any] = [start.isoformat(), end.isoformat()]
        if property_id is not None:
            query += " AND property_id = ?"
            params.append(property_id)
        if exclude_source is not None:
            query += " AND external_source != ?"
            params.append(exclude_source)
        if source is not None:
            query += " AND external_source = ?"
            params.append(source)
        query += " ORDER BY date, id"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_transaction_from_row(row) for row in rows]

    def count_transactions(self, external_source: str | None = None) -> int:
        with self._transaction() as conn:
            if external_source is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM transactions").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM transactions WHERE external_source = ?",
                    (external_source,),
                ).fetchone()
            return row["count"] if row else 0

    def update_transaction_classification(
        self,
        transaction_id: int,
        category: TransactionCategory,
        type_: TransactionType,
        ai_categorized: bool,
        ai_confidence: float,
    ) -> bool:
        """Update only the classification fields of a transaction.

        Identity fields are never touched.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET category = ?, type = ?, ai_categorized = ?, ai_confidence = ?, updated_at = ?
                WHERE id = ?
            """,
                (
                    category.value,
                    type_.value,
                    int(ai_categorized),
                    float(ai_confidence),
                    _now(),
                    transaction_id,
                ),
            )
            return cursor.rowcount > 0

    # Account methods

    def upsert_account(self, account: ExternalAccount) -> None:
        """Insert or update an external account (one row per platform + id)."""
        synced = account.last_synced_at or datetime.now(timezone.utc)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO external_accounts
                (platform, external_id, name, type, balance, currency, last_synced_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(platform, external_id) DO UPDATE SET
                    name = excluded.name,
                    type = excluded.type,
                    balance = excluded.balance,
                    currency = excluded.currency,
                    last_synced_at = excluded.last_synced_at
            """,
                (
                    account.platform,
                    account.external_id,
                    account.name,
                    account.type,
                    str(account.balance),
                    account.currency,
                    format_timestamp(synced),
                    _now(),
                ),
            )

    def get_accounts(self, platform: str | None = None) -> list[ExternalAccount]:
        with self._transaction() as conn:
            if platform is None:
                rows = conn.execute(
                    "SELECT * FROM external_accounts ORDER BY platform, name"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM external_accounts WHERE platform = ? ORDER BY name",
                    (platform,),
                ).fetchall()
            return [_account_from_row(row) for row in rows]

    # Sync cursor methods

    def get_last_sync(self, platform: str, account_id: str) -> datetime | None:
        """Get the sync watermark for an account (None if never synced)."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT last_synced_at FROM sync_cursors WHERE platform = ? AND account_id = ?",
                (platform, account_id),
            ).fetchone()
            return parse_timestamp(row["last_synced_at"]) if row else None

    def advance_sync_cursor(self, platform: str, account_id: str, synced_at: datetime) -> datetime:
        """
        Move an account's watermark forward (never backwards).

        Returns:
            The watermark stored after the update
        """
        value = format_timestamp(synced_at)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_cursors (platform, account_id, last_synced_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(platform, account_id) DO UPDATE SET
                    last_synced_at = MAX(sync_cursors.last_synced_at, excluded.last_synced_at),
                    updated_at = excluded.updated_at
            """,
                (platform, account_id, value, _now()),
            )
            row = conn.execute(
                "SELECT last_synced_at FROM sync_cursors WHERE platform = ? AND account_id = ?",
                (platform, account_id),
            ).fetchone()
            return parse_timestamp(row["last_synced_at"])

    # Category mapping methods (MappingStore protocol)

    def upsert_ledger_account_id(self, category: str, platform: str, account_id: str) -> None:
        """Atomically set the account id for one (category, platform) entry."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO category_account_ids (category, platform, account_id, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(category, platform) DO UPDATE SET
                    account_id = excluded.account_id,
                    updated_at = excluded.updated_at
            """,
                (category, platform, account_id, _now()),
            )

    def get_ledger_account_id(self, category: str, platform: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT account_id FROM category_account_ids WHERE category = ? AND platform = ?",
                (category, platform),
            ).fetchone()
            return row["account_id"] if row else None

    def get_ledger_account_ids(self) -> dict[str, dict[str, str]]:
        """All discovered ids as {category: {platform: account_id}}."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM category_account_ids").fetchall()
        result: dict[str, dict[str, str]] = {}
        for row in rows:
            result.setdefault(row["category"], {})[row["platform"]] = row["account_id"]
        return result

    def save_native_category_rule(
        self, platform: str, native_category: str, category: str, confidence: float
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO native_category_rules
                (platform, native_category, category, confidence, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(platform, native_category) DO UPDATE SET
                    category = excluded.category,
                    confidence = excluded.confidence
            """,
                (platform, native_category, category, confidence, _now()),
            )

    def get_native_category_rules(self) -> dict[tuple[str, str], str]:
        """Learned rules as {(platform, native_category): category}."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM native_category_rules").fetchall()
        return {(row["platform"], row["native_category"]): row["category"] for row in rows}

    # LLM cache methods

    def get_llm_cache(self, cache_key: str) -> dict[str, Any] | None:
        """Get cached LLM response by key."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM llm_cache
                WHERE cache_key = ? AND expires_at > ?
            """,
                (cache_key, _now()),
            ).fetchone()

            if row:
                conn.execute(
                    "UPDATE llm_cache SET hit_count = hit_count + 1 WHERE cache_key = ?",
                    (cache_key,),
                )
                return dict(row)
            return None

    def set_llm_cache(
        self,
        cache_key: str,
        model: str,
        prompt_version: str,
        response_json: str,
        ttl_days: int = 30,
    ) -> None:
        """Store LLM response in cache."""
        now = datetime.now(timezone.utc)
        expires = now + timedelta(days=ttl_days)

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO llm_cache
                (cache_key, model, prompt_version, response_json, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    response_json = excluded.response_json,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at,
                    hit_count = 1
            """,
                (
                    cache_key,
                    model,
                    prompt_version,
                    response_json,
                    format_timestamp(now),
                    format_timestamp(expires),
                ),
            )

    def clear_expired_llm_cache(self) -> int:
        """Clear expired LLM cache entries. Returns count of deleted rows."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM llm_cache WHERE expires_at < ?", (_now(),))
            return cursor.rowcount

    # Push log methods

    def get_push_record(self, push_key: str) -> PushRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM push_log WHERE push_key = ?", (push_key,)).fetchone()
            return PushRecord.from_row(row) if row else None

    def is_pushed(self, push_key: str) -> bool:
        record = self.get_push_record(push_key)
        return record is not None and record.status == PushStatus.PUSHED.value

    def record_push_success(
        self, push_key: str, transaction_id: int | None, ledger_transaction_id: str
    ) -> None:
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO push_log
                (push_key, transaction_id, ledger_transaction_id, status, attempts, created_at, pushed_at)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(push_key) DO UPDATE SET
                    ledger_transaction_id = excluded.ledger_transaction_id,
                    status = excluded.status,
                    error_message = NULL,
                    attempts = push_log.attempts + 1,
                    pushed_at = excluded.pushed_at
            """,
                (
                    push_key,
                    transaction_id,
                    ledger_transaction_id,
                    PushStatus.PUSHED.value,
                    now,
                    now,
                ),
            )

    def record_push_failure(
        self, push_key: str, transaction_id: int | None, error_message: str
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO push_log
                (push_key, transaction_id, status, error_message, attempts, created_at)
                VALUES (?, ?, ?, ?, 1, ?)
                ON CONFLICT(push_key) DO UPDATE SET
                    status = CASE WHEN push_log.status = 'PUSHED' THEN push_log.status
                                  ELSE excluded.status END,
                    error_message = excluded.error_message,
                    attempts = push_log.attempts + 1
            """,
                (push_key, transaction_id, PushStatus.FAILED.value, error_message, _now()),
            )

    # Reconciliation report methods

    def save_reconciliation_report(
        self, period_start: date, period_end: date, report: dict[str, Any]
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reconciliation_reports
                (period_start, period_end, report_json, generated_at)
                VALUES (?, ?, ?, ?)
            """,
                (
                    period_start.isoformat(),
                    period_end.isoformat(),
                    json.dumps(report, default=str),
                    _now(),
                ),
            )
            return int(cursor.lastrowid)

    def get_latest_reconciliation_report(self) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reconciliation_reports ORDER BY id DESC LIMIT 1"
            ).fetchone()
            if not row:
                return None
            return {
                "id": row["id"],
                "period_start": row["period_start"],
                "period_end": row["period_end"],
                "generated_at": row["generated_at"],
                "report": json.loads(row["report_json"]),
            }

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._transaction() as conn:
            total = conn.execute("SELECT COUNT(*) AS count FROM transactions").fetchone()
            by_source = conn.execute(
                "SELECT external_source, COUNT(*) AS count FROM transactions GROUP BY external_source"
            ).fetchall()
            uncategorized = conn.execute(
                "SELECT COUNT(*) AS count FROM transactions WHERE category = ?",
                (TransactionCategory.OTHER.value,),
            ).fetchone()
            accounts = conn.execute("SELECT COUNT(*) AS count FROM external_accounts").fetchone()
            pushed = conn.execute(
                "SELECT COUNT(*) AS count FROM push_log WHERE status = ?",
                (PushStatus.PUSHED.value,),
            ).fetchone()
            push_failed = conn.execute(
                "SELECT COUNT(*) AS count FROM push_log WHERE status = ?",
                (PushStatus.FAILED.value,),
            ).fetchone()

            return {
                "transactions_total": total["count"] if total else 0,
                "transactions_by_source": {row["external_source"]: row["count"] for row in by_source},
                "uncategorized": uncategorized["count"] if uncategorized else 0,
                "accounts": accounts["count"] if accounts else 0,
                "pushed": pushed["count"] if pushed else 0,
                "push_failed": push_failed["count"] if push_failed else 0,
            }
