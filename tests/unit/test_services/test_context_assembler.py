"""Tests for context assembly."""

import json
from unittest.mock import MagicMock

import pytest

from story_ledger.agents.compressor import CompressionResult, compression_placeholder
from story_ledger.memory.ledger_models import PriorWorkState, SeedBlock, Work
from story_ledger.services.context_assembler import (
    ContextAssembler,
    aged_units,
    assemble,
    assemble_seed,
    is_in_window,
)
from story_ledger.settings import Settings
from tests.shared.ledger_factories import make_callback, make_entry

PADDING = "The sea keeps its secrets and so does Mara. " * 160


def summary_for(unit_index: int) -> str:
    """Short stored summary for a unit."""
    return f"Unit {unit_index}: Mara stays wary of Tobin; the broken lamp is unresolved."


@pytest.fixture
def compressor():
    """Compressor double that always succeeds."""
    mock = MagicMock()
    mock.compress.side_effect = lambda entry: CompressionResult(
        summary=f"Compressed unit {entry.unit_index}: Mara wary, Tobin hopeful, lamp unresolved."
    )
    return mock


@pytest.fixture
def assembler(ledger_db, compressor):
    """ContextAssembler with default settings."""
    return ContextAssembler(ledger_db, compressor, Settings())


class TestWindowHelpers:
    """Tests for is_in_window and aged_units."""

    def test_is_in_window(self):
        """Entries up to ``window`` units back are in the window."""
        assert is_in_window(7, target_unit=10, window=3)
        assert not is_in_window(6, target_unit=10, window=3)

    def test_aged_units_oldest_first(self):
        """Aged units exclude in-window and future entries."""
        entries = [make_entry(i) for i in (5, 1, 9, 3, 12)]
        assert aged_units(entries, target_unit=10, window=3) == [1, 3, 5]


class TestAssemble:
    """Tests for the pure assemble function."""

    def test_nothing_before_target(self):
        """No eligible entries gives an empty block."""
        result = assemble([make_entry(3)], [], target_unit=3, window=3, summaries={})
        assert result.is_empty
        assert result.estimated_tokens == 0

    def test_layout(self):
        """Full entries newest first, then summaries, then the bank last."""
        entries = [make_entry(i) for i in range(1, 6)]
        bank = [make_callback(2, "the broken lamp")]

        result = assemble(entries, bank, target_unit=6, window=2, summaries={2: summary_for(2)})

        block = result.block
        assert block.startswith("<character_continuity>")
        assert block.endswith("</callback_bank>\n</character_continuity>")
        order = [block.index(f"<unit_{i}_") for i in (5, 4, 3, 2, 1)]
        assert order == sorted(order)
        assert result.full_units == [5, 4]
        assert result.summarized_units == [3, 2, 1]
        assert summary_for(2) in block
        assert compression_placeholder(3) in block
        assert result.estimated_tokens == -(-len(block) // 4)

    def test_full_entries_are_valid_json(self):
        """In-window entries render as the complete ledger payload."""
        result = assemble([make_entry(1)], [], target_unit=2, window=3, summaries={})

        body = result.block.split("<unit_1_ledger>\n")[1].split("\n</unit_1_ledger>")[0]
        assert json.loads(body) == make_entry(1).ledger_payload()

    def test_later_entries_ignored(self):
        """Entries at or after the target never appear."""
        entries = [make_entry(i) for i in (1, 2, 3, 4)]

        result = assemble(entries, [], target_unit=3, window=3, summaries={})

        assert result.full_units == [2, 1]
        assert "<unit_3_" not in result.block
        assert "<unit_4_" not in result.block

    def test_drop_units(self):
        """Dropped units are left out and reported."""
        entries = [make_entry(i) for i in range(1, 6)]

        result = assemble(entries, [], 6, 2, {}, drop_units=[1, 2])

        assert result.summarized_units == [3]
        assert result.dropped_units == [1, 2]

    def test_no_bank_section_when_empty(self):
        """An empty bank is not rendered."""
        result = assemble([make_entry(1)], [], target_unit=2, window=3, summaries={})
        assert "<callback_bank>" not in result.block


class TestAssembleSeed:
    """Tests for assemble_seed."""

    def _seed(self) -> SeedBlock:
        book1 = Work(id="b1", title="Book One", series_id="s", sequence_number=1)
        book2 = Work(id="b2", title="Book Two", series_id="s", sequence_number=2)
        return SeedBlock(
            work_id="b3",
            prior_works=[
                PriorWorkState(
                    work=book1,
                    final_entry=make_entry(30, work_id="b1", compressed_summary="Book one ends."),
                    open_callbacks=[make_callback(12, "the lighthouse key")],
                ),
                PriorWorkState(work=book2, final_entry=make_entry(25, work_id="b2")),
            ],
        )

    def test_renders_each_prior_work(self):
        """Each prior work contributes its final state and open callbacks."""
        result = assemble_seed(self._seed(), {})

        block = result.block
        assert block.startswith("<character_continuity_from_previous_works>")
        assert '<work_1_final_state title="Book One" unit="30">\nBook one ends.' in block
        assert '<work_2_final_state title="Book Two" unit="25">\n{' in block
        assert "<unresolved_callbacks_from_work_1>" in block
        assert "the lighthouse key" in block
        assert "<unresolved_callbacks_from_work_2>" not in block
        assert result.seeded_from == ["b1", "b2"]

    def test_summaries_override_payload(self):
        """A provided summary replaces the full final state."""
        result = assemble_seed(self._seed(), {"b2": "Book two ends."})
        assert '<work_2_final_state title="Book Two" unit="25">\nBook two ends.' in result.block

    def test_drop_works(self):
        """Dropped works are omitted."""
        result = assemble_seed(self._seed(), {}, drop_works=["b1"])
        assert result.seeded_from == ["b2"]
        assert "Book One" not in result.block


class TestContextAssemblerBudget:
    """Tests for budget enforcement in ContextAssembler.build."""

    def test_first_unit_is_empty(self, assembler, compressor):
        """Unit 1 has no history and no seed."""
        result = assembler.build("work-1", 1)

        assert result.is_empty
        compressor.compress.assert_not_called()

    def test_twenty_large_entries_fit_at_fallback_window(self, assembler, ledger_db, compressor):
        """Oversized recent entries force the fallback window without truncation."""
        for i in range(1, 21):
            ledger_db.upsert_entry(
                make_entry(i, private_thoughts=PADDING, compressed_summary=summary_for(i))
            )

        result = assembler.build("work-1", 21)

        assert result.window == 2
        assert result.estimated_tokens <= 5000
        assert result.full_units == [20, 19]
        assert result.summarized_units == list(range(18, 0, -1))
        assert result.dropped_units == []
        for i in range(1, 19):
            assert summary_for(i) in result.block
        assert result.block.count(PADDING) == 2
        compressor.compress.assert_not_called()

    def test_drops_oldest_summaries_when_fallback_overflows(self, ledger_db, compressor):
        """Whole summarized entries are dropped oldest first."""
        for i in range(1, 7):
            ledger_db.upsert_entry(make_entry(i, compressed_summary=summary_for(i)))
        entries = ledger_db.get_entries("work-1")
        summaries = {i: summary_for(i) for i in range(1, 7)}
        at_fallback = assemble(entries, [], 7, 2, summaries)
        at_primary = assemble(entries, [], 7, 3, summaries)
        budget = at_fallback.estimated_tokens - 1
        assert at_primary.estimated_tokens > budget

        assembler = ContextAssembler(ledger_db, compressor, Settings(context_budget_tokens=budget))
        result = assembler.build("work-1", 7)

        assert result.dropped_units == [1]
        assert result.summarized_units == [4, 3, 2]
        assert result.estimated_tokens <= budget

    def test_nothing_fits(self, ledger_db, compressor):
        """When even the smallest block overflows, nothing is injected."""
        for i in range(1, 4):
            ledger_db.upsert_entry(make_entry(i))
        assembler = ContextAssembler(ledger_db, compressor, Settings(context_budget_tokens=10))

        result = assembler.build("work-1", 4)

        assert result.is_empty

    def test_bank_from_newest_prior_entry(self, assembler, ledger_db):
        """The bank comes from the entry just before the target."""
        ledger_db.upsert_entry(make_entry(1, callbacks=[make_callback(1, "old bank")]))
        ledger_db.upsert_entry(make_entry(2, callbacks=[make_callback(2, "new bank")]))
        ledger_db.upsert_entry(make_entry(3, callbacks=[make_callback(3, "future bank")]))

        result = assembler.build("work-1", 3)

        assert "new bank" in result.block
        assert "old bank" not in result.block
        assert "future bank" not in result.block


class TestContextAssemblerCompression:
    """Tests for lazy, write-once compression."""

    def test_each_aged_entry_compressed_once(self, ledger_db, compressor):
        """Repeated builds reuse stored summaries."""
        hook = MagicMock()
        assembler = ContextAssembler(ledger_db, compressor, Settings(), on_compression=hook)
        for i in range(1, 6):
            ledger_db.upsert_entry(make_entry(i))

        first = assembler.build("work-1", 6)
        assembler.build("work-1", 6)
        assembler.build("work-1", 6)

        assert first.summarized_units == [2, 1]
        assert compressor.compress.call_count == 2
        assert hook.call_count == 2
        stored = {e.unit_index: e.compressed_summary for e in ledger_db.get_entries("work-1")}
        assert stored[1].startswith("Compressed unit 1")
        assert stored[3] is None

        ledger_db.upsert_entry(make_entry(6))
        assembler.build("work-1", 7)

        assert compressor.compress.call_count == 3

    def test_placeholder_not_persisted(self, assembler, ledger_db, compressor):
        """A failed compression is shown as a placeholder and retried next time."""
        compressor.compress.side_effect = lambda entry: CompressionResult(
            summary=compression_placeholder(entry.unit_index), is_placeholder=True
        )
        for i in range(1, 5):
            ledger_db.upsert_entry(make_entry(i))

        result = assembler.build("work-1", 5)

        assert compression_placeholder(1) in result.block
        assert ledger_db.get_entries("work-1", newest_first=False)[0].compressed_summary is None

        calls = compressor.compress.call_count
        assembler.build("work-1", 5)
        assert compressor.compress.call_count > calls

    def test_stored_summary_wins_over_concurrent_write(self, assembler, ledger_db, compressor):
        """If another writer stored a summary first, the stored one is used."""
        ledger_db.upsert_entry(make_entry(1))
        for i in range(2, 5):
            ledger_db.upsert_entry(make_entry(i))

        def compress_after_race(entry):
            ledger_db.set_compressed_summary(entry.work_id, entry.unit_index, "First writer wins.")
            return CompressionResult(summary="Late summary that loses the race.")

        compressor.compress.side_effect = compress_after_race

        result = assembler.build("work-1", 5)

        assert "First writer wins." in result.block
        assert "Late summary" not in result.block


class TestContextAssemblerSeed:
    """Tests for seeding the first unit of a sequel."""

    def _seed(self, private_thoughts: str = "") -> SeedBlock:
        return SeedBlock(
            work_id="b2",
            prior_works=[
                PriorWorkState(
                    work=Work(id="b1", title="Book One", sequence_number=1),
                    final_entry=make_entry(
                        9, work_id="b1", private_thoughts=private_thoughts
                    ),
                )
            ],
        )

    def test_seed_used_without_history(self, assembler):
        """A work without entries gets the seed block."""
        result = assembler.build("b2", 1, seed=self._seed())

        assert result.seeded_from == ["b1"]
        assert "<character_continuity_from_previous_works>" in result.block

    def test_seed_ignored_once_history_exists(self, assembler, ledger_db):
        """Own history takes over from the seed."""
        ledger_db.upsert_entry(make_entry(1, work_id="b2"))

        result = assembler.build("b2", 2, seed=self._seed())

        assert result.seeded_from == []
        assert result.full_units == [1]

    def test_oversized_seed_is_compressed(self, ledger_db, compressor):
        """Prior final states are compressed when the seed overflows."""
        ledger_db.upsert_entry(make_entry(9, work_id="b1", private_thoughts=PADDING * 4))
        assembler = ContextAssembler(ledger_db, compressor, Settings())

        result = assembler.build_from_seed(self._seed(private_thoughts=PADDING * 4))

        assert "Compressed unit 9" in result.block
        assert PADDING not in result.block
        compressor.compress.assert_called_once()
