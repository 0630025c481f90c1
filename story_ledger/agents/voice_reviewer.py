"""Voice Reviewer Agent - Scores a unit's character voices against the ledger."""

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import CharacterRoster, LedgerEntry, VoiceReview
from story_ledger.services.callback_registry import open_callbacks
from story_ledger.utils.exceptions import SchemaNotFoundError
from story_ledger.utils.validation import validate_not_empty, validate_unit_index

from .base import BaseAgent

if TYPE_CHECKING:
    from story_ledger.settings import Settings

logger = logging.getLogger(__name__)


class VoiceReviewer(BaseAgent):
    """Agent that checks new content against every recorded unit of the work.

    Unlike the context assembler, the reviewer sees the full history with no
    budget applied.
    """

    def __init__(
        self,
        model: str | None = None,
        settings: "Settings | None" = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            name="Voice Reviewer",
            agent_role="reviewer",
            model=model,
            settings=settings,
            timeout=timeout,
        )

    def review(
        self,
        unit_index: int,
        unit_text: str,
        history: Sequence[LedgerEntry],
        roster: CharacterRoster | None,
    ) -> VoiceReview:
        """Review one unit.

        Args:
            unit_index: Index of the unit under review.
            unit_text: The newly produced unit text.
            history: Ledger entries of the work, in any order.
            roster: The work's character roster.

        Returns:
            The validated VoiceReview.

        Raises:
            SchemaNotFoundError: If the roster is missing or has no characters.
            ValueError: If there is no history to review against.
            MalformedResponseError: If a score is out of range or the JSON
                does not match the schema.
            LLMError: If the model could not be reached.
        """
        validate_unit_index(unit_index)
        validate_not_empty(unit_text, "unit_text")
        if roster is None or not roster.characters:
            raise SchemaNotFoundError(
                f"No character roster; cannot review unit {unit_index}",
                work_id=roster.work_id if roster else None,
            )
        if not history:
            raise ValueError("history must contain at least one ledger entry")

        newest_first = sorted(history, key=lambda e: e.unit_index, reverse=True)
        bank = open_callbacks(newest_first[0].callback_bank)

        prompt = self.render_prompt(
            "review_unit",
            unit_index=unit_index,
            unit_text=unit_text,
            roster=roster.characters,
            history=[
                {"unit": e.unit_index, "json": json.dumps(e.ledger_payload(), indent=2)}
                for e in newest_first
            ],
            callback_bank_json=(
                json.dumps([cb.model_dump(mode="json") for cb in bank], indent=2)
                if bank
                else None
            ),
        )

        logger.info(
            "Reviewing voices for unit %d against %d ledger entries",
            unit_index,
            len(newest_first),
        )
        review = self.generate_structured(prompt, VoiceReview)
        logger.info(
            "Voice review for unit %d: %d characters checked, %d flags, avg score %s",
            unit_index,
            len(review.voice_checks),
            review.flags_count,
            f"{review.average_score:.2f}" if review.average_score is not None else "n/a",
        )
        return review
