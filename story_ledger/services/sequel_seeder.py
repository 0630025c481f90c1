"""Cross-work seeding for sequels.

The first unit of a sequel has no ledger history of its own. The seeder
collects the final ledger state of every earlier work so the assembler can
treat it as history before unit 1.
"""

import logging
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import PriorWorkState, SeedBlock, Work
from story_ledger.services.callback_registry import open_callbacks

if TYPE_CHECKING:
    from story_ledger.memory.ledger_database import LedgerDatabase

logger = logging.getLogger(__name__)


class SequelSeeder:
    """Derives SeedBlocks from the ledger store. Nothing it builds is persisted."""

    def __init__(self, db: "LedgerDatabase") -> None:
        self.db = db

    def prior_works(self, work: Work) -> list[Work]:
        """Earlier works in the chain, oldest first.

        Series members with a lower sequence number when the work belongs
        to a series; otherwise the ``parent_work_id`` chain, stopping at a
        missing parent or a cycle.
        """
        if work.series_id:
            return self.db.get_series_works(work.series_id, work.sequence_number)

        chain: list[Work] = []
        seen = {work.id}
        parent_id = work.parent_work_id
        while parent_id and parent_id not in seen:
            seen.add(parent_id)
            parent = self.db.get_work(parent_id)
            if parent is None:
                logger.debug("Parent work %s of %s not found; chain ends", parent_id, work.id)
                break
            chain.append(parent)
            parent_id = parent.parent_work_id
        if parent_id and parent_id in seen:
            logger.warning("Cycle in parent chain of work %s at %s", work.id, parent_id)
        chain.reverse()
        return chain

    def seed(self, work_id: str) -> SeedBlock | None:
        """Build the seed for ``work_id``.

        Returns:
            SeedBlock with one PriorWorkState per earlier work that has a
            final entry, or None when the work is not a sequel, already has
            ledger entries, or no earlier work has any.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        work = self.db.get_work(work_id)
        if work is None or not work.is_sequel:
            return None
        if self.db.count_entries(work_id) > 0:
            return None

        prior_states: list[PriorWorkState] = []
        for prior in self.prior_works(work):
            final_entry = self.db.get_final_entry(prior.id)
            if final_entry is None:
                logger.debug("Prior work %s has no ledger entries; skipping", prior.id)
                continue
            prior_states.append(
                PriorWorkState(
                    work=prior,
                    final_entry=final_entry,
                    open_callbacks=open_callbacks(final_entry.callback_bank),
                )
            )

        if not prior_states:
            logger.debug("No prior ledger state to seed %s from", work_id)
            return None

        logger.info("Seeding %s from %d prior work(s)", work_id, len(prior_states))
        return SeedBlock(work_id=work_id, prior_works=prior_states)
