"""Ledger service - the seam the generation pipeline calls.

This package provides LedgerService, split into logical sub-modules.

Sub-modules:
    _extraction - Ledger extraction for a finished unit
    _context    - Continuity block for the next unit, including sequel seeding
    _review     - Voice review and surgical revision
    _usage      - Usage records for model calls
"""

import logging
from typing import Any

from story_ledger.agents import (
    ContinuityCompressor,
    LedgerExtractor,
    SurgicalReviser,
    VoiceReviewer,
)
from story_ledger.memory.cost_models import UsageSummary
from story_ledger.memory.ledger_database import LedgerDatabase
from story_ledger.memory.ledger_models import (
    CharacterRoster,
    ContinuityHealthMetrics,
    LedgerEntry,
    UnitRecord,
    VoiceReviewRecord,
    Work,
)
from story_ledger.services.context_assembler import AssembledContext, ContextAssembler
from story_ledger.services.ledger_service import _context, _extraction, _review, _usage
from story_ledger.services.sequel_seeder import SequelSeeder
from story_ledger.settings import Settings
from story_ledger.utils.validation import validate_not_none, validate_positive

logger = logging.getLogger(__name__)

__all__ = ["LedgerService"]


class LedgerService:
    """Character continuity service.

    Owns the ledger store, the four agents, the context assembler and the
    sequel seeder. ``SchemaNotFoundError`` and ``PersistenceError`` propagate;
    malformed model output yields ``None``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        db: LedgerDatabase | None = None,
        timeout: float | None = None,
    ):
        """Create a LedgerService.

        Parameters:
            settings (Settings | None): Settings to use; loaded when None.
            db (LedgerDatabase | None): Store to use; opened at
                ``settings.get_database_path()`` when None.
            timeout (float | None): Seconds allowed for each model call.
                Defaults to ``settings.ollama_timeout``.
        """
        self.settings = settings or Settings.load()
        if timeout is not None:
            validate_positive(timeout, "timeout")
        self.timeout = float(timeout) if timeout is not None else self.settings.ollama_timeout
        logger.debug("Initializing LedgerService (timeout=%.0fs)", self.timeout)

        self.db = db or LedgerDatabase(self.settings.get_database_path())
        self.extractor = LedgerExtractor(settings=self.settings, timeout=self.timeout)
        self.compressor = ContinuityCompressor(settings=self.settings, timeout=self.timeout)
        self.reviewer = VoiceReviewer(settings=self.settings, timeout=self.timeout)
        self.reviser = SurgicalReviser(settings=self.settings, timeout=self.timeout)
        self.seeder = SequelSeeder(self.db)
        self.assembler = ContextAssembler(
            self.db,
            self.compressor,
            self.settings,
            on_compression=self._on_compression,
        )
        logger.debug("LedgerService initialized successfully")

    def _on_compression(self, entry: LedgerEntry) -> None:
        _usage.record_usage(
            self, self.compressor, entry.work_id, "ledger_compression", entry.unit_index
        )

    # ========== REGISTRATION ==========

    def register_work(self, work: Work) -> None:
        """Store or update a work."""
        validate_not_none(work, "work")
        self.db.upsert_work(work)
        logger.info(
            "Registered work %s (series=%s, sequence=%d, parent=%s)",
            work.id,
            work.series_id,
            work.sequence_number,
            work.parent_work_id,
        )

    def register_roster(self, roster: CharacterRoster) -> None:
        """Store a work's character roster."""
        validate_not_none(roster, "roster")
        self.db.save_roster(roster)
        logger.info("Registered roster for %s (%d characters)", roster.work_id, len(roster.characters))

    def save_unit(
        self,
        work_id: str,
        unit_index: int,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> UnitRecord:
        """Store a unit's content."""
        return self.db.save_unit(work_id, unit_index, content, metadata)

    # ========== LEDGER ==========

    def extract_ledger(
        self, work_id: str, unit_index: int, unit_text: str, unit_title: str = ""
    ) -> LedgerEntry | None:
        """Extract and store the ledger entry for a finished unit."""
        return _extraction.extract_ledger(self, work_id, unit_index, unit_text, unit_title)

    def build_context(self, work_id: str, unit_index: int) -> AssembledContext:
        """Build the continuity block to inject before generating ``unit_index``."""
        return _context.build_context(self, work_id, unit_index)

    # ========== REVIEW ==========

    def review_unit(
        self, work_id: str, unit_index: int, unit_text: str
    ) -> VoiceReviewRecord | None:
        """Review a unit's character voices against the full ledger history."""
        return _review.review_unit(self, work_id, unit_index, unit_text)

    def revise_unit(
        self,
        work_id: str,
        unit_index: int,
        unit_text: str,
        review: VoiceReviewRecord | None = None,
    ) -> str | None:
        """Revise a unit if its review crossed the threshold."""
        return _review.revise_unit(self, work_id, unit_index, unit_text, review)

    # ========== METRICS ==========

    def get_health_metrics(self) -> ContinuityHealthMetrics:
        """Aggregate continuity health numbers across all works."""
        return self.db.get_health_metrics(self.settings.review_pass_threshold)

    def get_usage_summary(self, work_id: str) -> UsageSummary:
        """Usage and cost totals for a work."""
        return self.db.get_usage_summary(work_id)
