"""Pipeline hooks that wrap LedgerService for the generation flow.

Continuity is an enhancement: every hook logs its failures and returns a
degraded result instead of raising into the caller.
"""

import logging
from dataclasses import dataclass

from story_ledger.memory.ledger_models import LedgerEntry, VoiceReviewRecord
from story_ledger.services.ledger_service import LedgerService
from story_ledger.utils.error_handling import handle_ledger_errors
from story_ledger.utils.logging_config import log_context

logger = logging.getLogger(__name__)


@dataclass
class UnitProcessingResult:
    """What ``after_unit`` did for one unit."""

    work_id: str
    unit_index: int
    original_text: str
    entry: LedgerEntry | None = None
    review: VoiceReviewRecord | None = None
    revised_text: str | None = None

    @property
    def final_text(self) -> str:
        """The revised text when a revision was applied, else the original."""
        return self.revised_text if self.revised_text is not None else self.original_text

    @property
    def was_revised(self) -> bool:
        """True when the unit text was rewritten."""
        return self.revised_text is not None


class ContinuityPipeline:
    """``before_unit`` / ``after_unit`` hooks for a chapter generation loop."""

    def __init__(self, service: LedgerService, review_enabled: bool = True):
        self.service = service
        self.review_enabled = review_enabled

    def before_unit(self, work_id: str, unit_index: int) -> str:
        """Continuity block to inject into the prompt for ``unit_index``, or ""."""
        with log_context():
            return self._build_context(work_id, unit_index)

    def after_unit(
        self, work_id: str, unit_index: int, unit_text: str, unit_title: str = ""
    ) -> UnitProcessingResult:
        """Record, review and, if flagged, revise a freshly generated unit.

        The unit is stored first, then extraction, review and revision run
        in order. Each step is guarded separately, so a failed review still
        leaves the extracted entry in place.
        """
        result = UnitProcessingResult(
            work_id=work_id, unit_index=unit_index, original_text=unit_text
        )
        with log_context():
            logger.info("Processing %s unit %d (%d chars)", work_id, unit_index, len(unit_text))
            self._save_unit(work_id, unit_index, unit_text)
            result.entry = self._extract(work_id, unit_index, unit_text, unit_title)
            if self.review_enabled:
                result.review = self._review(work_id, unit_index, unit_text)
                if result.review is not None:
                    result.revised_text = self._revise(
                        work_id, unit_index, unit_text, result.review
                    )
            logger.info(
                "Finished %s unit %d: entry=%s, review=%s, revised=%s",
                work_id,
                unit_index,
                result.entry is not None,
                result.review is not None,
                result.was_revised,
            )
        return result

    @handle_ledger_errors(default_return="")
    def _build_context(self, work_id: str, unit_index: int) -> str:
        return self.service.build_context(work_id, unit_index).block

    @handle_ledger_errors()
    def _save_unit(self, work_id: str, unit_index: int, unit_text: str) -> None:
        self.service.save_unit(work_id, unit_index, unit_text)

    @handle_ledger_errors()
    def _extract(
        self, work_id: str, unit_index: int, unit_text: str, unit_title: str
    ) -> LedgerEntry | None:
        return self.service.extract_ledger(work_id, unit_index, unit_text, unit_title)

    @handle_ledger_errors()
    def _review(self, work_id: str, unit_index: int, unit_text: str) -> VoiceReviewRecord | None:
        return self.service.review_unit(work_id, unit_index, unit_text)

    @handle_ledger_errors()
    def _revise(
        self, work_id: str, unit_index: int, unit_text: str, review: VoiceReviewRecord
    ) -> str | None:
        return self.service.revise_unit(work_id, unit_index, unit_text, review)
