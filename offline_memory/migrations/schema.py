"""
Database migrations for OfflineMemory.

Handles schema updates for existing databases. Safe to run on every open:
applied versions are recorded in schema_version and skipped afterwards.
"""

import sqlite3
import logging
from pathlib import Path
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Migration definitions: (version, description, sql_statements)
MIGRATIONS: List[Tuple[int, str, List[str]]] = [
    (1, "Add attribution columns to items", [
        "ALTER TABLE items ADD COLUMN entity_id TEXT;",
        "ALTER TABLE items ADD COLUMN process_id TEXT;",
        "ALTER TABLE items ADD COLUMN session_id TEXT;",
        "CREATE INDEX IF NOT EXISTS idx_items_entity_id ON items(entity_id);",
        "CREATE INDEX IF NOT EXISTS idx_items_session_id ON items(session_id);",
    ]),
    (2, "Promote dedupe hash to an indexed content_hash column", [
        "ALTER TABLE items ADD COLUMN content_hash TEXT;",
        "CREATE INDEX IF NOT EXISTS idx_items_content_hash ON items(content_hash);",
        """
        UPDATE items
        SET content_hash = lower(json_extract(meta, '$.h'))
        WHERE content_hash IS NULL
          AND meta IS NOT NULL
          AND json_valid(meta)
          AND json_extract(meta, '$.h') IS NOT NULL;
        """,
    ]),
    (3, "Create FTS5 virtual table for lexical search", [
        """
        CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
            text,
            title,
            tags,
            content='items',
            content_rowid='rowid'
        );
        """,
        """
        INSERT INTO items_fts(rowid, text, title, tags)
        SELECT rowid, text, COALESCE(title, ''), COALESCE(tags, '') FROM items;
        """,
        """
        CREATE TRIGGER IF NOT EXISTS items_ai AFTER INSERT ON items BEGIN
            INSERT INTO items_fts(rowid, text, title, tags)
            VALUES (new.rowid, new.text, COALESCE(new.title, ''), COALESCE(new.tags, ''));
        END;
        """,
        """
        CREATE TRIGGER IF NOT EXISTS items_ad AFTER DELETE ON items BEGIN
            INSERT INTO items_fts(items_fts, rowid, text, title, tags)
            VALUES ('delete', old.rowid, old.text, COALESCE(old.title, ''), COALESCE(old.tags, ''));
        END;
        """,
        """
        CREATE TRIGGER IF NOT EXISTS items_au AFTER UPDATE ON items BEGIN
            INSERT INTO items_fts(items_fts, rowid, text, title, tags)
            VALUES ('delete', old.rowid, old.text, COALESCE(old.title, ''), COALESCE(old.tags, ''));
            INSERT INTO items_fts(rowid, text, title, tags)
            VALUES (new.rowid, new.text, COALESCE(new.title, ''), COALESCE(new.tags, ''));
        END;
        """,
    ]),
]


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get current schema version from database."""
    cursor = conn.cursor()

    cursor.execute("""
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='schema_version'
    """)

    if not cursor.fetchone():
        cursor.execute("""
            CREATE TABLE schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        return 0

    cursor.execute("SELECT MAX(version) FROM schema_version")
    result = cursor.fetchone()
    return result[0] if result[0] else 0


def check_column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    """Check if a column exists in a table."""
    cursor = conn.cursor()
    cursor.execute(f"PRAGMA table_info({table})")
    columns = [row[1] for row in cursor.fetchall()]
    return column in columns


def fts_available(conn: sqlite3.Connection) -> bool:
    """True when the items_fts virtual table exists."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='items_fts'"
    )
    return cursor.fetchone() is not None


def run_migrations(db_path: str) -> Tuple[int, List[str]]:
    """
    Run all pending migrations on the database.

    Args:
        db_path: Path to the SQLite database

    Returns:
        Tuple of (migrations_run, list of descriptions)
    """
    if not Path(db_path).exists():
        return 0, ["Database does not exist yet - will be created fresh"]

    conn = sqlite3.Connection(db_path)
    applied = []

    try:
        current_version = get_current_version(conn)

        for version, description, statements in MIGRATIONS:
            if version <= current_version:
                continue

            logger.info(f"Applying migration {version}: {description}")

            try:
                conn.execute("BEGIN")
                for sql in statements:
                    sql = sql.strip()
                    if not sql:
                        continue

                    # Handle ALTER TABLE ADD COLUMN - check if column exists first
                    if "ALTER TABLE" in sql and "ADD COLUMN" in sql:
                        parts = sql.split()
                        table = parts[parts.index("TABLE") + 1]
                        column = parts[parts.index("COLUMN") + 1]

                        if check_column_exists(conn, table, column):
                            logger.debug(f"  Column {column} already exists in {table}, skipping")
                            continue

                    try:
                        conn.execute(sql)
                    except sqlite3.OperationalError as e:
                        message = str(e).lower()
                        if "duplicate column" in message:
                            logger.debug("  Column already exists, skipping")
                            continue
                        if "no such module: fts5" in message:
                            # No triggers either; lexical search falls back to LIKE
                            logger.warning("  FTS5 not available in this SQLite build, skipping")
                            break
                        raise

                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (version,)
                )
                conn.commit()
                applied.append(f"v{version}: {description}")
            except Exception:
                conn.rollback()
                raise

    finally:
        conn.close()

    return len(applied), applied
