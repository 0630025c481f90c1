"""Merge and prune operations over callback banks.

A callback bank is the list of moments worth revisiting, carried forward
from unit to unit. Each extraction merges its callbacks into the previous
bank and prunes the result. Both operations are pure: they never mutate
their inputs and their output order depends only on input order.
"""

import logging
from collections.abc import Iterable

from story_ledger.memory.ledger_models import Callback, CallbackStatus

logger = logging.getLogger(__name__)

DEFAULT_PRUNE_AGE = 3

_SPENT_STATUSES = frozenset({CallbackStatus.USED, CallbackStatus.EXPIRED})


def merge_callbacks(old: Iterable[Callback], new: Iterable[Callback]) -> list[Callback]:
    """Merge two callback banks keyed by (source_unit_index, moment).

    ``old`` is inserted first and ``new`` overwrites by key, so the newest
    extraction decides a callback's status. A key keeps the position where
    it was first seen.

    Note that ``moment`` is compared verbatim: two phrasings of the same
    moment stay separate callbacks.
    """
    merged: dict[tuple[int, str], Callback] = {}
    for callback in old:
        merged[callback.key] = callback
    for callback in new:
        merged[callback.key] = callback
    return list(merged.values())


def is_prunable(callback: Callback, current_unit: int, min_age: int = DEFAULT_PRUNE_AGE) -> bool:
    """True when a spent callback is old enough to drop. Ripe callbacks never are."""
    if callback.status not in _SPENT_STATUSES:
        return False
    return current_unit - callback.source_unit_index >= min_age


def prune_callbacks(
    merged: Iterable[Callback], current_unit: int, min_age: int = DEFAULT_PRUNE_AGE
) -> list[Callback]:
    """Drop used/expired callbacks at least ``min_age`` units old.

    Args:
        merged: Callback bank after merging.
        current_unit: Index of the unit being recorded.
        min_age: Minimum age in units before a spent callback is removed.

    Returns:
        New list holding the surviving callbacks in their original order.
    """
    kept = [cb for cb in merged if not is_prunable(cb, current_unit, min_age)]
    return kept


def merge_and_prune(
    old: Iterable[Callback],
    new: Iterable[Callback],
    current_unit: int,
    min_age: int = DEFAULT_PRUNE_AGE,
) -> list[Callback]:
    """Merge ``new`` into ``old`` and prune the result at ``current_unit``."""
    merged = merge_callbacks(old, new)
    pruned = prune_callbacks(merged, current_unit, min_age)
    if len(pruned) != len(merged):
        logger.debug(
            "Pruned %d spent callbacks at unit %d (%d remain)",
            len(merged) - len(pruned),
            current_unit,
            len(pruned),
        )
    return pruned


def open_callbacks(bank: Iterable[Callback]) -> list[Callback]:
    """Callbacks that have not been used yet (ripe or expired)."""
    return [cb for cb in bank if cb.status != CallbackStatus.USED]


def ripe_callbacks(bank: Iterable[Callback]) -> list[Callback]:
    """Callbacks still waiting to be used."""
    return [cb for cb in bank if cb.status == CallbackStatus.RIPE]
