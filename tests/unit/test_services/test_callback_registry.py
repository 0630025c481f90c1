"""Tests for callback merge and prune operations."""

from story_ledger.memory.ledger_models import CallbackStatus
from story_ledger.services.callback_registry import (
    is_prunable,
    merge_and_prune,
    merge_callbacks,
    open_callbacks,
    prune_callbacks,
    ripe_callbacks,
)
from tests.shared.ledger_factories import make_callback


class TestMergeCallbacks:
    """Tests for merge_callbacks."""

    def test_new_overwrites_old_by_key(self):
        """A shared key merges to one callback carrying the later status."""
        old = [make_callback(2, "the broken lamp")]
        new = [make_callback(2, "the broken lamp", CallbackStatus.USED)]

        merged = merge_callbacks(old, new)

        assert len(merged) == 1
        assert merged[0].status == CallbackStatus.USED

    def test_distinct_keys_are_kept(self):
        """Same moment from a different unit is a different callback."""
        merged = merge_callbacks(
            [make_callback(1, "the storm")], [make_callback(2, "the storm")]
        )
        assert [cb.source_unit_index for cb in merged] == [1, 2]

    def test_merge_is_idempotent(self):
        """merge(A, merge(A, B)) == merge(A, B)."""
        a = [make_callback(1, "a"), make_callback(2, "b", CallbackStatus.USED)]
        b = [make_callback(2, "b"), make_callback(3, "c")]

        once = merge_callbacks(a, b)
        twice = merge_callbacks(a, once)

        assert twice == once

    def test_key_keeps_first_seen_position(self):
        """Overwriting a key does not move it to the end."""
        old = [make_callback(1, "first"), make_callback(2, "second")]
        new = [make_callback(1, "first", CallbackStatus.EXPIRED)]

        merged = merge_callbacks(old, new)

        assert [cb.moment for cb in merged] == ["first", "second"]
        assert merged[0].status == CallbackStatus.EXPIRED

    def test_inputs_are_not_mutated(self):
        """Merging leaves both input lists unchanged."""
        old = [make_callback(1, "x")]
        new = [make_callback(1, "x", CallbackStatus.USED), make_callback(2, "y")]
        old_copy, new_copy = list(old), list(new)

        merge_callbacks(old, new)

        assert old == old_copy
        assert new == new_copy

    def test_moment_compared_verbatim(self):
        """Different phrasings of the same moment are not merged."""
        merged = merge_callbacks(
            [make_callback(1, "the broken lamp")], [make_callback(1, "The broken lamp")]
        )
        assert len(merged) == 2


class TestPruneCallbacks:
    """Tests for prune_callbacks and is_prunable."""

    def test_prune_at_unit_ten(self):
        """Old used callbacks go; recent used and ripe ones stay."""
        bank = [
            make_callback(1, "old used", CallbackStatus.USED),
            make_callback(8, "recent used", CallbackStatus.USED),
            make_callback(9, "ripe", CallbackStatus.RIPE),
        ]

        pruned = prune_callbacks(bank, current_unit=10)

        assert [cb.moment for cb in pruned] == ["recent used", "ripe"]

    def test_ripe_never_pruned(self):
        """Ripe callbacks survive at any age."""
        assert not is_prunable(make_callback(1, "ancient"), current_unit=100)

    def test_expired_pruned_at_min_age(self):
        """Expired callbacks are dropped exactly at min_age."""
        cb = make_callback(4, "missed", CallbackStatus.EXPIRED)
        assert not is_prunable(cb, current_unit=6)
        assert is_prunable(cb, current_unit=7)

    def test_custom_min_age(self):
        """min_age is honored."""
        cb = make_callback(4, "used", CallbackStatus.USED)
        assert prune_callbacks([cb], current_unit=7, min_age=5) == [cb]
        assert prune_callbacks([cb], current_unit=9, min_age=5) == []

    def test_merge_and_prune(self):
        """Status updates in the new list decide what is pruned."""
        old = [make_callback(1, "lamp"), make_callback(5, "letter")]
        new = [make_callback(1, "lamp", CallbackStatus.USED), make_callback(6, "bell")]

        bank = merge_and_prune(old, new, current_unit=6)

        assert [cb.moment for cb in bank] == ["letter", "bell"]


class TestCallbackFilters:
    """Tests for open_callbacks and ripe_callbacks."""

    def test_open_excludes_used_only(self):
        """Expired callbacks still count as open."""
        bank = [
            make_callback(1, "a"),
            make_callback(2, "b", CallbackStatus.USED),
            make_callback(3, "c", CallbackStatus.EXPIRED),
        ]
        assert [cb.moment for cb in open_callbacks(bank)] == ["a", "c"]

    def test_ripe_only(self):
        """ripe_callbacks keeps only ripe ones."""
        bank = [make_callback(1, "a"), make_callback(3, "c", CallbackStatus.EXPIRED)]
        assert [cb.moment for cb in ripe_callbacks(bank)] == ["a"]
