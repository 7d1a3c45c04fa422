"""
Database migrations for the SQLite state store.

Migrations are applied in version order and tracked in a migrations table.
"""

from .runner import MigrationError, MigrationRunner, get_all_migrations

__all__ = ["MigrationError", "MigrationRunner", "get_all_migrations"]
