"""
OfflineMemory Migrations Package.

Available migrations:
- run_migrations: Run SQLite schema migrations
"""

from .schema import run_migrations, fts_available, MIGRATIONS

__all__ = [
    "run_migrations",
    "fts_available",
    "MIGRATIONS",
]
