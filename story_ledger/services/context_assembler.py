"""Context assembly for the next unit's generation prompt.

The block is built by a pure function, ``assemble``, from a work's ledger
entries, the latest callback bank and whatever summaries exist. The
``ContextAssembler`` drives it with a shrinking recency window and, when
even the smallest window overflows, drops whole summarized entries oldest
first. A block is never cut mid-entry, and overflow is never an error.
"""

import json
import logging
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from story_ledger.agents.compressor import compression_placeholder
from story_ledger.memory.ledger_models import Callback, LedgerEntry, SeedBlock
from story_ledger.utils.token_estimation import DEFAULT_CHARS_PER_TOKEN, estimate_tokens
from story_ledger.utils.validation import validate_unit_index

if TYPE_CHECKING:
    from story_ledger.agents.compressor import ContinuityCompressor
    from story_ledger.memory.ledger_database import LedgerDatabase
    from story_ledger.settings import Settings

logger = logging.getLogger(__name__)

CONTINUITY_INSTRUCTION = """  <instruction>
    Below is a unit-by-unit record of how each character has EXPERIENCED the story so far,
    newest unit first. Write the next unit so that:
    - emotional states continue from where each character left off;
    - unresolved tensions keep building instead of vanishing;
    - private knowledge stays private until it is deliberately revealed;
    - relationships reflect what the characters have been through together.
    The callback_bank lists moments worth returning to. Use one when it fits naturally.
  </instruction>"""

SEED_INSTRUCTION = """  <instruction>
    This work continues earlier ones. Each section shows where the characters stood at
    the end of a previous work, oldest first. Their feelings, relationships, secrets and
    open tensions carry into this work; nothing resets between works.
  </instruction>"""


@dataclass
class AssembledContext:
    """A rendered continuity block and how it was built."""

    block: str
    estimated_tokens: int
    window: int | None = None
    full_units: list[int] = field(default_factory=list)
    summarized_units: list[int] = field(default_factory=list)
    dropped_units: list[int] = field(default_factory=list)
    seeded_from: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to inject."""
        return not self.block


def empty_context(window: int | None = None) -> AssembledContext:
    """An empty block."""
    return AssembledContext(block="", estimated_tokens=0, window=window)


def is_in_window(unit_index: int, target_unit: int, window: int) -> bool:
    """True when an entry is close enough to the target to be shown in full."""
    return target_unit - unit_index <= window


def aged_units(entries: Sequence[LedgerEntry], target_unit: int, window: int) -> list[int]:
    """Indices of eligible entries that fall outside ``window``, oldest first."""
    return sorted(
        e.unit_index
        for e in entries
        if e.unit_index < target_unit and not is_in_window(e.unit_index, target_unit, window)
    )


def _render_callbacks(tag: str, callbacks: Sequence[Callback], note: str = "") -> str:
    body = json.dumps([cb.model_dump(mode="json") for cb in callbacks], indent=2)
    note_line = f"  {note}\n" if note else ""
    return f"<{tag}>\n{note_line}{body}\n</{tag}>"


def assemble(
    entries: Sequence[LedgerEntry],
    callback_bank: Sequence[Callback],
    target_unit: int,
    window: int,
    summaries: Mapping[int, str],
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    drop_units: Collection[int] = (),
) -> AssembledContext:
    """Render the continuity block for ``target_unit``.

    Entries at or after ``target_unit`` are ignored. Entries within
    ``window`` units of the target are rendered as full JSON; older ones
    use ``summaries[unit_index]``, or the compression placeholder when no
    summary is known. Units in ``drop_units`` are left out entirely.

    Args:
        entries: Ledger entries of the work, in any order.
        callback_bank: Bank appended after the entries, in full.
        target_unit: Unit about to be generated.
        window: Recency window in units.
        summaries: Known summaries by unit index.
        chars_per_token: Characters per estimated token.
        drop_units: Unit indices to omit.

    Returns:
        AssembledContext with the block and its estimated size. Empty when
        no entries are eligible.
    """
    eligible = sorted(
        (e for e in entries if e.unit_index < target_unit and e.unit_index not in drop_units),
        key=lambda e: e.unit_index,
        reverse=True,
    )
    if not eligible:
        return empty_context(window)

    context = AssembledContext(
        block="", estimated_tokens=0, window=window, dropped_units=sorted(drop_units)
    )
    sections = ["<character_continuity>", CONTINUITY_INSTRUCTION]
    for entry in eligible:
        if is_in_window(entry.unit_index, target_unit, window):
            body = json.dumps(entry.ledger_payload(), indent=2)
            tag = f"unit_{entry.unit_index}_ledger"
            sections.append(f"<{tag}>\n{body}\n</{tag}>")
            context.full_units.append(entry.unit_index)
        else:
            summary = summaries.get(entry.unit_index) or compression_placeholder(entry.unit_index)
            tag = f"unit_{entry.unit_index}_summary"
            sections.append(f"<{tag}>\n{summary}\n</{tag}>")
            context.summarized_units.append(entry.unit_index)

    if callback_bank:
        sections.append(_render_callbacks("callback_bank", callback_bank))
    sections.append("</character_continuity>")

    context.block = "\n".join(sections)
    context.estimated_tokens = estimate_tokens(context.block, chars_per_token)
    return context


def assemble_seed(
    seed: SeedBlock,
    summaries: Mapping[str, str],
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    drop_works: Collection[str] = (),
) -> AssembledContext:
    """Render the continuity block carried over from earlier works.

    Each prior work shows its summary from ``summaries`` (keyed by work id),
    falling back to its final entry's stored summary and then to the full
    final-state JSON, followed by its open callbacks.
    """
    works = [p for p in seed.prior_works if p.work.id not in drop_works]
    if not works:
        return empty_context()

    context = AssembledContext(block="", estimated_tokens=0)
    sections = ["<character_continuity_from_previous_works>", SEED_INSTRUCTION]
    for prior in works:
        work = prior.work
        entry = prior.final_entry
        summary = summaries.get(work.id) or entry.compressed_summary
        body = summary or json.dumps(entry.ledger_payload(), indent=2)
        tag = f"work_{work.sequence_number}_final_state"
        sections.append(
            f'<{tag} title="{work.title}" unit="{entry.unit_index}">\n{body}\n</{tag}>'
        )
        if prior.open_callbacks:
            sections.append(
                _render_callbacks(
                    f"unresolved_callbacks_from_work_{work.sequence_number}",
                    prior.open_callbacks,
                    note="Moments from this earlier work worth calling back to:",
                )
            )
        context.seeded_from.append(work.id)
    sections.append("</character_continuity_from_previous_works>")

    context.block = "\n".join(sections)
    context.estimated_tokens = estimate_tokens(context.block, chars_per_token)
    return context


class ContextAssembler:
    """Builds budgeted continuity blocks from the ledger store.

    Summaries are computed lazily by the compressor the first time an entry
    leaves the recency window and written once to the store. Placeholders
    returned on compression failure are used for the current block only.
    """

    def __init__(
        self,
        db: "LedgerDatabase",
        compressor: "ContinuityCompressor",
        settings: "Settings",
        on_compression: Callable[[LedgerEntry], None] | None = None,
    ) -> None:
        self.db = db
        self.compressor = compressor
        self.settings = settings
        # Called after every model-produced summary, e.g. to record usage
        self.on_compression = on_compression

    @property
    def budget(self) -> int:
        """Token budget for a block."""
        return self.settings.context_budget_tokens

    def build(
        self, work_id: str, target_unit: int, seed: SeedBlock | None = None
    ) -> AssembledContext:
        """Build the block for ``target_unit`` of ``work_id``.

        When the work has no eligible entries, ``seed`` (if given) is
        rendered instead.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        validate_unit_index(target_unit, "target_unit")
        entries = [e for e in self.db.get_entries(work_id) if e.unit_index < target_unit]
        if not entries:
            if seed is not None and not seed.is_empty:
                return self.build_from_seed(seed)
            logger.debug("No ledger history for %s before unit %d", work_id, target_unit)
            return empty_context()

        callback_bank = entries[0].callback_bank
        summaries: dict[int, str] = {
            e.unit_index: e.compressed_summary for e in entries if e.compressed_summary
        }
        cpt = self.settings.chars_per_token

        windows = self.settings.get_recency_windows()
        context = empty_context()
        for window in windows:
            self._ensure_summaries(entries, target_unit, window, summaries)
            context = assemble(entries, callback_bank, target_unit, window, summaries, cpt)
            if context.estimated_tokens <= self.budget:
                logger.info(
                    "Continuity block for %s unit %d: ~%d tokens "
                    "(window %d, %d full, %d summarized)",
                    work_id,
                    target_unit,
                    context.estimated_tokens,
                    window,
                    len(context.full_units),
                    len(context.summarized_units),
                )
                return context
            logger.info(
                "Continuity block for %s unit %d over budget at window %d (~%d > %d tokens)",
                work_id,
                target_unit,
                window,
                context.estimated_tokens,
                self.budget,
            )

        window = windows[-1]
        dropped: list[int] = []
        for unit_index in aged_units(entries, target_unit, window):
            dropped.append(unit_index)
            context = assemble(
                entries, callback_bank, target_unit, window, summaries, cpt, drop_units=dropped
            )
            if context.estimated_tokens <= self.budget:
                logger.warning(
                    "Dropped %d oldest summarized units to fit %s unit %d within %d tokens",
                    len(dropped),
                    work_id,
                    target_unit,
                    self.budget,
                )
                return context

        logger.warning(
            "Continuity block for %s unit %d cannot fit within %d tokens; injecting nothing",
            work_id,
            target_unit,
            self.budget,
        )
        return empty_context(window)

    def build_from_seed(self, seed: SeedBlock) -> AssembledContext:
        """Render a seed block under the same budget rule as unit history."""
        cpt = self.settings.chars_per_token
        summaries: dict[str, str] = {}
        context = assemble_seed(seed, summaries, cpt)
        if context.estimated_tokens <= self.budget:
            return context

        logger.info(
            "Seed block for %s over budget (~%d > %d tokens); compressing prior works",
            seed.work_id,
            context.estimated_tokens,
            self.budget,
        )
        for prior in seed.prior_works:
            if not prior.final_entry.compressed_summary:
                summary = self._compress(prior.final_entry)
                if summary:
                    summaries[prior.work.id] = summary
        context = assemble_seed(seed, summaries, cpt)

        dropped: list[str] = []
        for prior in seed.prior_works:
            if context.estimated_tokens <= self.budget:
                break
            dropped.append(prior.work.id)
            context = assemble_seed(seed, summaries, cpt, drop_works=dropped)

        if context.estimated_tokens > self.budget:
            logger.warning(
                "Seed block for %s cannot fit within %d tokens; injecting nothing",
                seed.work_id,
                self.budget,
            )
            return empty_context()
        if dropped:
            logger.warning(
                "Dropped %d oldest prior works to fit seed block for %s",
                len(dropped),
                seed.work_id,
            )
        return context

    def _ensure_summaries(
        self,
        entries: Sequence[LedgerEntry],
        target_unit: int,
        window: int,
        summaries: dict[int, str],
    ) -> None:
        by_unit = {e.unit_index: e for e in entries}
        for unit_index in aged_units(entries, target_unit, window):
            if unit_index in summaries:
                continue
            summary = self._compress(by_unit[unit_index])
            if summary:
                summaries[unit_index] = summary

    def _compress(self, entry: LedgerEntry) -> str | None:
        """Compress and cache one entry; None when only a placeholder was produced."""
        result = self.compressor.compress(entry)
        if result.is_placeholder:
            return None
        if self.on_compression is not None:
            self.on_compression(entry)
        if not self.db.set_compressed_summary(entry.work_id, entry.unit_index, result.summary):
            logger.debug(
                "Summary for %s unit %d was already stored; keeping the stored one",
                entry.work_id,
                entry.unit_index,
            )
            stored = self.db.get_latest_entry(entry.work_id, before_unit=entry.unit_index + 1)
            if stored is not None and stored.compressed_summary:
                return stored.compressed_summary
        return result.summary
