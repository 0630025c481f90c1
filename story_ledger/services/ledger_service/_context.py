"""Continuity block assembly for LedgerService."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from story_ledger.services.context_assembler import AssembledContext
from story_ledger.utils.validation import validate_not_empty, validate_unit_index

if TYPE_CHECKING:
    from story_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def build_context(svc: LedgerService, work_id: str, unit_index: int) -> AssembledContext:
    """Build the continuity block to inject before generating ``unit_index``.

    A sequel with no ledger entries of its own is seeded from the final
    state of the earlier works in its chain.

    Parameters:
        svc: The LedgerService instance.
        work_id: Work being generated.
        unit_index: Unit about to be generated.

    Returns:
        The assembled context; its block is empty when there is nothing to inject.

    Raises:
        PersistenceError: If the store cannot be read.
    """
    validate_not_empty(work_id, "work_id")
    validate_unit_index(unit_index)

    seed = svc.seeder.seed(work_id)
    context = svc.assembler.build(work_id, unit_index, seed=seed)
    if context.is_empty:
        logger.debug("No continuity context for %s unit %d", work_id, unit_index)
    elif context.seeded_from:
        logger.info(
            "Seeded %s unit %d from %d prior work(s) (~%d tokens)",
            work_id,
            unit_index,
            len(context.seeded_from),
            context.estimated_tokens,
        )
    return context
