"""Surgical Reviser Agent - Fixes flagged voice issues in a unit."""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import MissedCallback, VoiceFlag, VoiceReview
from story_ledger.utils.validation import validate_not_empty, validate_unit_index

from .base import MIN_RESPONSE_LENGTH, BaseAgent

if TYPE_CHECKING:
    from story_ledger.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_REVISION_THRESHOLD = 0.8

# A revision must keep at least this share of the original length
MIN_LENGTH_RATIO = 0.5


@dataclass
class RevisionItem:
    """One character's issues in the change list sent to the model."""

    character: str
    score: float
    flags: list[VoiceFlag] = field(default_factory=list)
    missed_callbacks: list[MissedCallback] = field(default_factory=list)


def build_change_list(
    review: VoiceReview, threshold: float = DEFAULT_REVISION_THRESHOLD
) -> list[RevisionItem]:
    """Characters whose score is under ``threshold`` or who missed a callback.

    Characters that pass both checks are left out even if they carry flags.
    """
    return [
        RevisionItem(
            character=check.character,
            score=check.authenticity_score,
            flags=list(check.flags),
            missed_callbacks=list(check.missed_callbacks),
        )
        for check in review.voice_checks
        if check.authenticity_score < threshold or check.missed_callbacks
    ]


def needs_revision(review: VoiceReview, threshold: float = DEFAULT_REVISION_THRESHOLD) -> bool:
    """True when any character is under ``threshold`` or has missed callbacks."""
    return bool(build_change_list(review, threshold))


class SurgicalReviser(BaseAgent):
    """Agent that rewrites only the flagged passages of a unit."""

    def __init__(
        self,
        model: str | None = None,
        settings: "Settings | None" = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            name="Surgical Reviser",
            agent_role="reviser",
            model=model,
            settings=settings,
            timeout=timeout,
        )

    def revise(self, unit_index: int, unit_text: str, review: VoiceReview) -> str | None:
        """Revise a unit if its review crossed the threshold.

        Args:
            unit_index: Index of the unit.
            unit_text: The original unit text.
            review: The unit's voice review.

        Returns:
            The complete revised text, or None when no revision was needed.

        Raises:
            LLMError: If the model call failed. The original text is untouched.
        """
        validate_unit_index(unit_index)
        validate_not_empty(unit_text, "unit_text")

        changes = build_change_list(review, self.settings.revision_score_threshold)
        if not changes:
            logger.info("Unit %d passed voice review; no revision needed", unit_index)
            return None

        logger.info(
            "Revising unit %d for %d characters: %s",
            unit_index,
            len(changes),
            ", ".join(item.character for item in changes),
        )
        prompt = self.render_prompt(
            "revise_unit",
            unit_index=unit_index,
            unit_text=unit_text,
            changes=changes,
        )
        min_length = max(MIN_RESPONSE_LENGTH, int(len(unit_text) * MIN_LENGTH_RATIO))
        revised = self.generate(prompt, min_response_length=min_length)

        logger.info(
            "Revised unit %d (%d -> %d chars)", unit_index, len(unit_text), len(revised)
        )
        return revised
