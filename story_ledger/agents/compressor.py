"""Continuity Compressor Agent - Shrinks aged ledger entries into short summaries."""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import LedgerEntry
from story_ledger.services.callback_registry import ripe_callbacks
from story_ledger.utils.exceptions import LLMError

from .base import BaseAgent

if TYPE_CHECKING:
    from story_ledger.settings import Settings

logger = logging.getLogger(__name__)

COMPRESSION_PLACEHOLDER = "Unit {unit_index}: state compressed unavailable"

# Shortest summary accepted from the model
MIN_SUMMARY_LENGTH = 20


def compression_placeholder(unit_index: int) -> str:
    """Deterministic stand-in used when a summary could not be produced."""
    return COMPRESSION_PLACEHOLDER.format(unit_index=unit_index)


@dataclass
class CompressionResult:
    """Outcome of compressing one entry.

    Placeholders must not be cached, so a later call can try again.
    """

    summary: str
    is_placeholder: bool = False


class ContinuityCompressor(BaseAgent):
    """Agent that summarizes a full ledger entry in a fixed word range."""

    def __init__(
        self,
        model: str | None = None,
        settings: "Settings | None" = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            name="Continuity Compressor",
            agent_role="compressor",
            model=model,
            settings=settings,
            timeout=timeout,
        )

    def build_prompt(self, entry: LedgerEntry) -> str:
        """Render the compression prompt for an entry.

        Used and expired callbacks are left out so the summary cannot carry them.
        """
        ripe = ripe_callbacks(entry.callback_bank)
        return self.render_prompt(
            "compress_entry",
            unit_index=entry.unit_index,
            unit_title=entry.unit_title or None,
            ledger_json=json.dumps(entry.ledger_payload(), indent=2),
            ripe_callbacks_json=(
                json.dumps([cb.model_dump(mode="json") for cb in ripe], indent=2)
                if ripe
                else None
            ),
            min_words=self.settings.compression_min_words,
            max_words=self.settings.compression_max_words,
        )

    def compress(self, entry: LedgerEntry) -> CompressionResult:
        """Compress an entry, falling back to a placeholder on model failure.

        Never raises for provider failures; template errors are configuration
        problems and propagate.
        """
        prompt = self.build_prompt(entry)
        try:
            summary = self.generate(prompt, min_response_length=MIN_SUMMARY_LENGTH)
        except LLMError as e:
            logger.warning(
                "Compression failed for %s unit %d, using placeholder: %s",
                entry.work_id,
                entry.unit_index,
                e,
            )
            return CompressionResult(
                summary=compression_placeholder(entry.unit_index), is_placeholder=True
            )

        word_count = len(summary.split())
        if not (
            self.settings.compression_min_words // 2
            <= word_count
            <= self.settings.compression_max_words * 2
        ):
            logger.debug(
                "Summary for %s unit %d has %d words (asked for %d-%d)",
                entry.work_id,
                entry.unit_index,
                word_count,
                self.settings.compression_min_words,
                self.settings.compression_max_words,
            )
        logger.info(
            "Compressed %s unit %d into %d words", entry.work_id, entry.unit_index, word_count
        )
        return CompressionResult(summary=summary)


__all__ = [
    "COMPRESSION_PLACEHOLDER",
    "CompressionResult",
    "ContinuityCompressor",
    "compression_placeholder",
]
