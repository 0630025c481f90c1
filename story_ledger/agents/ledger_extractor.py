"""Ledger Extractor Agent - Records how each character experienced a unit."""

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import (
    Callback,
    CharacterRoster,
    LedgerEntry,
    LedgerExtraction,
)
from story_ledger.services.callback_registry import merge_and_prune, open_callbacks
from story_ledger.utils.exceptions import SchemaNotFoundError
from story_ledger.utils.token_estimation import estimate_tokens
from story_ledger.utils.validation import validate_not_empty, validate_unit_index

from .base import BaseAgent

if TYPE_CHECKING:
    from story_ledger.settings import Settings

logger = logging.getLogger(__name__)


class LedgerExtractor(BaseAgent):
    """Agent that turns one unit's text into per-character subjective state."""

    def __init__(
        self,
        model: str | None = None,
        settings: "Settings | None" = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            name="Ledger Extractor",
            agent_role="extractor",
            model=model,
            settings=settings,
            timeout=timeout,
        )

    def extract(
        self,
        work_id: str,
        unit_index: int,
        unit_text: str,
        roster: CharacterRoster | None,
        prior_callbacks: Sequence[Callback] = (),
        unit_title: str = "",
    ) -> LedgerEntry:
        """Extract the ledger entry for one unit.

        The returned entry's callback bank is the prior bank merged with the
        newly extracted callbacks, pruned at ``unit_index``. The entry is not
        persisted here.

        Args:
            work_id: Work the unit belongs to.
            unit_index: 1-based index of the unit.
            unit_text: Full text of the unit.
            roster: The work's character roster.
            prior_callbacks: Callback bank of the latest entry before this unit.
            unit_title: Optional title; the model may supply one when empty.

        Returns:
            The new LedgerEntry.

        Raises:
            SchemaNotFoundError: If the roster is missing or has no characters.
            MalformedResponseError: If the model output does not match the schema.
            LLMError: If the model could not be reached.
        """
        validate_not_empty(work_id, "work_id")
        validate_unit_index(unit_index)
        validate_not_empty(unit_text, "unit_text")
        if roster is None or not roster.characters:
            raise SchemaNotFoundError(
                f"No character roster for work {work_id}; cannot extract unit {unit_index}",
                work_id=work_id,
            )

        prior = list(prior_callbacks)
        # Used callbacks are already spent; the model only needs to update open ones
        visible = open_callbacks(prior)
        prior_callbacks_json = (
            json.dumps([cb.model_dump(mode="json") for cb in visible], indent=2)
            if visible
            else None
        )

        prompt = self.render_prompt(
            "extract_ledger",
            unit_index=unit_index,
            unit_text=unit_text,
            unit_title=unit_title or None,
            roster=roster.characters,
            prior_callbacks_json=prior_callbacks_json,
        )

        logger.info(
            "Extracting ledger for %s unit %d (%d characters, %d prior callbacks)",
            work_id,
            unit_index,
            len(roster.characters),
            len(prior),
        )
        extraction = self.generate_structured(prompt, LedgerExtraction)

        extracted = [cb.to_callback(unit_index) for cb in extraction.callbacks]
        bank = merge_and_prune(
            prior, extracted, unit_index, min_age=self.settings.callback_prune_age
        )

        entry = LedgerEntry(
            work_id=work_id,
            unit_index=unit_index,
            unit_title=unit_title or extraction.unit_title,
            character_states=extraction.character_states,
            group_dynamics=extraction.group_dynamics,
            callback_bank=bank,
        )
        entry.token_estimate = estimate_tokens(
            json.dumps(entry.ledger_payload()), self.settings.chars_per_token
        )

        unknown = set(entry.character_states) - set(roster.names)
        if unknown:
            logger.debug(
                "Extraction for %s unit %d includes characters not in roster: %s",
                work_id,
                unit_index,
                ", ".join(sorted(unknown)),
            )

        logger.info(
            "Extracted ledger for %s unit %d: %d characters, %d callbacks (~%d tokens)",
            work_id,
            unit_index,
            len(entry.character_states),
            len(bank),
            entry.token_estimate,
        )
        return entry
