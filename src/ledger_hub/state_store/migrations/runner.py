"""
Versioned schema migrations for the state store.

Migration modules live next to this file and are named ``NNN_name.py``
(001_llm_cache.py, 002_push_log.py, ...). Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn) -> None
- downgrade(conn) -> None   (optional)

Applied versions are recorded in the ``migrations`` table. A migration that
cannot be loaded is an error: silently skipping it would leave the schema
behind the code.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """A migration could not be loaded or applied."""

    pass


@dataclass(frozen=True)
class Migration:
    """A single schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def get_all_migrations() -> list[Migration]:
    """Discover migration modules, ordered by version."""
    found: dict[int, Migration] = {}

    for path in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module_name = f"{__package__}.{path.stem}"
        try:
            module = importlib.import_module(module_name)
            migration = Migration(
                version=int(module.VERSION),
                name=str(module.NAME),
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        except (ImportError, AttributeError, ValueError) as e:
            raise MigrationError(f"Cannot load migration {path.stem}: {e}") from e

        if migration.version in found:
            raise MigrationError(
                f"Duplicate migration version {migration.version}: "
                f"{found[migration.version].label} and {migration.label}"
            )
        found[migration.version] = migration

    return [found[v] for v in sorted(found)]


class MigrationRunner:
    """Apply pending migrations on a connection, tracking them in ``migrations``."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def current_version(self) -> int:
        row = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()
        return row[0] or 0

    def pending(self) -> list[Migration]:
        applied = self.applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply(self, migration: Migration) -> None:
        """Apply one migration and record it, rolling back on failure."""
        logger.info("Applying migration %s", migration.label)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error("Migration %s failed: %s", migration.label, e)
            raise MigrationError(f"Migration {migration.label} failed: {e}") from e

    def revert(self, migration: Migration) -> None:
        """Undo one migration."""
        if migration.downgrade is None:
            raise MigrationError(f"Migration {migration.label} cannot be reverted")

        logger.info("Reverting migration %s", migration.label)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise MigrationError(f"Revert of {migration.label} failed: {e}") from e

    def run_pending(self) -> list[int]:
        """Apply every pending migration in order. Returns applied versions."""
        applied = []
        for migration in self.pending():
            self.apply(migration)
            applied.append(migration.version)

        if applied:
            logger.info("Applied %d migration(s): %s", len(applied), applied)
        else:
            logger.debug("Schema up to date (version %d)", self.current_version())
        return applied

    def migrate_to(self, target_version: int) -> None:
        """Move the schema up or down to ``target_version``."""
        by_version = {m.version: m for m in get_all_migrations()}
        current = self.current_version()

        if target_version > current:
            for version in sorted(v for v in by_version if current < v <= target_version):
                self.apply(by_version[version])
        elif target_version < current:
            for version in sorted(
                (v for v in self.applied_versions() if v > target_version), reverse=True
            ):
                self.revert(by_version[version])
