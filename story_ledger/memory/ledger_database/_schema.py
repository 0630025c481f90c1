"""Schema initialization for LedgerDatabase."""

import logging
import sqlite3

from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def init_db(db) -> None:
    """Create the ledger tables and indexes if they do not exist.

    Tables:
    - works: work identity and series position
    - rosters: character roster JSON per work
    - ledger_entries: one row per (work_id, unit_index)
    - voice_reviews: one row per (work_id, unit_index)
    - units: unit content with metadata (voice_revision flag)
    - usage_records: priced model calls

    Args:
        db: LedgerDatabase instance.

    Raises:
        PersistenceError: If the schema cannot be created.
    """
    try:
        with db.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS works (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    series_id TEXT,
                    sequence_number INTEGER NOT NULL DEFAULT 1,
                    parent_work_id TEXT,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                );
                CREATE INDEX IF NOT EXISTS idx_works_series
                    ON works(series_id, sequence_number);

                CREATE TABLE IF NOT EXISTS rosters (
                    work_id TEXT PRIMARY KEY,
                    roster_data TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                );

                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    work_id TEXT NOT NULL,
                    unit_index INTEGER NOT NULL,
                    unit_title TEXT NOT NULL DEFAULT '',
                    ledger_data TEXT NOT NULL,
                    callback_bank TEXT NOT NULL DEFAULT '[]',
                    compressed_summary TEXT,
                    token_estimate INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    UNIQUE(work_id, unit_index)
                );
                CREATE INDEX IF NOT EXISTS idx_ledger_work
                    ON ledger_entries(work_id, unit_index);

                CREATE TABLE IF NOT EXISTS voice_reviews (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    work_id TEXT NOT NULL,
                    unit_index INTEGER NOT NULL,
                    review_data TEXT NOT NULL,
                    flags_count INTEGER NOT NULL DEFAULT 0,
                    avg_score REAL,
                    revision_applied INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    UNIQUE(work_id, unit_index)
                );

                CREATE TABLE IF NOT EXISTS units (
                    work_id TEXT NOT NULL,
                    unit_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (work_id, unit_index)
                );

                CREATE TABLE IF NOT EXISTS usage_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    work_id TEXT NOT NULL,
                    unit_index INTEGER,
                    operation TEXT NOT NULL,
                    model_id TEXT NOT NULL DEFAULT '',
                    agent_role TEXT NOT NULL DEFAULT '',
                    input_tokens INTEGER NOT NULL DEFAULT 0,
                    output_tokens INTEGER NOT NULL DEFAULT 0,
                    total_tokens INTEGER NOT NULL DEFAULT 0,
                    cost_usd REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_usage_work ON usage_records(work_id);
            """)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    except sqlite3.Error as e:
        logger.error("Failed to initialize ledger schema at %s: %s", db.db_path, e, exc_info=True)
        raise PersistenceError(f"Failed to initialize ledger database: {e}") from e
    logger.debug("Ledger schema ready at %s (version %d)", db.db_path, SCHEMA_VERSION)
