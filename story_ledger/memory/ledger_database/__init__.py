"""SQLite store for the character ledger.

Holds works, rosters, ledger entries, voice reviews, unit content and usage
records. Each public method opens its own connection, so entries for
different units can be written from different threads.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from story_ledger.memory.cost_models import UsageRecord, UsageSummary
from story_ledger.memory.ledger_models import (
    CharacterRoster,
    ContinuityHealthMetrics,
    LedgerEntry,
    UnitRecord,
    VoiceReviewRecord,
    Work,
)
from story_ledger.settings import DEFAULT_DB_PATH

from . import _entries, _metrics, _reviews, _schema, _units, _usage, _works

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_DB_PATH", "LedgerDatabase"]


class LedgerDatabase:
    """SQLite database for ledger entries and their related records.

    The lock serializes individual connections only. A read-merge-write
    cycle spanning several calls is not atomic; callers process one unit
    at a time per work.
    """

    def __init__(self, db_path: Path | str | None = None):
        """Initialize database.

        Args:
            db_path: Path to SQLite database file. Defaults to output/story_ledger.db.
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        _schema.init_db(self)
        logger.debug("LedgerDatabase ready at %s", self.db_path)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes."""
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            try:
                with conn:
                    yield conn
            finally:
                conn.close()

    # === Works and rosters (delegated to _works) ===

    def upsert_work(self, work: Work) -> None:
        """Insert or update a work."""
        _works.upsert_work(self, work)

    def get_work(self, work_id: str) -> Work | None:
        """Fetch a work by id."""
        return _works.get_work(self, work_id)

    def get_series_works(self, series_id: str, before_sequence: int) -> list[Work]:
        """Earlier works of a series, ascending by sequence number."""
        return _works.get_series_works(self, series_id, before_sequence)

    def save_roster(self, roster: CharacterRoster) -> None:
        """Store a work's character roster."""
        _works.save_roster(self, roster)

    def get_roster(self, work_id: str) -> CharacterRoster | None:
        """Fetch a work's character roster."""
        return _works.get_roster(self, work_id)

    # === Ledger entries (delegated to _entries) ===

    def upsert_entry(self, entry: LedgerEntry) -> None:
        """Insert or replace the entry for (work_id, unit_index)."""
        _entries.upsert_entry(self, entry)

    def get_entries(self, work_id: str, newest_first: bool = True) -> list[LedgerEntry]:
        """All entries for a work."""
        return _entries.get_entries(self, work_id, newest_first)

    def get_latest_entry(self, work_id: str, before_unit: int | None = None) -> LedgerEntry | None:
        """Most recent entry, optionally only among units before ``before_unit``."""
        return _entries.get_latest_entry(self, work_id, before_unit)

    def get_final_entry(self, work_id: str) -> LedgerEntry | None:
        """Highest-unit entry of a work (its final recorded state)."""
        return _entries.get_latest_entry(self, work_id)

    def count_entries(self, work_id: str) -> int:
        """Number of entries for a work."""
        return _entries.count_entries(self, work_id)

    def set_compressed_summary(self, work_id: str, unit_index: int, summary: str) -> bool:
        """Write a summary once; returns False if one was already stored."""
        return _entries.set_compressed_summary(self, work_id, unit_index, summary)

    # === Voice reviews (delegated to _reviews) ===

    def upsert_review(self, record: VoiceReviewRecord) -> None:
        """Insert or replace the review for (work_id, unit_index)."""
        _reviews.upsert_review(self, record)

    def get_review(self, work_id: str, unit_index: int) -> VoiceReviewRecord | None:
        """Fetch a unit's voice review."""
        return _reviews.get_review(self, work_id, unit_index)

    # === Units (delegated to _units) ===

    def save_unit(
        self,
        work_id: str,
        unit_index: int,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> UnitRecord:
        """Insert or replace a unit's content."""
        return _units.save_unit(self, work_id, unit_index, content, metadata)

    def get_unit(self, work_id: str, unit_index: int) -> UnitRecord | None:
        """Fetch a unit's content."""
        return _units.get_unit(self, work_id, unit_index)

    def apply_unit_revision(self, work_id: str, unit_index: int, content: str) -> UnitRecord:
        """Store revised unit text and flag the unit and its review as revised."""
        return _units.apply_unit_revision(self, work_id, unit_index, content)

    # === Usage and metrics (delegated to _usage / _metrics) ===

    def record_usage(self, record: UsageRecord) -> int:
        """Insert a usage record."""
        return _usage.record_usage(self, record)

    def get_usage_summary(self, work_id: str) -> UsageSummary:
        """Usage totals for a work."""
        return _usage.get_usage_summary(self, work_id)

    def get_health_metrics(self, pass_threshold: float = 0.85) -> ContinuityHealthMetrics:
        """Aggregate continuity health numbers."""
        return _metrics.get_health_metrics(self, pass_threshold)
