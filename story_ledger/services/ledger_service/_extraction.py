"""Ledger extraction for LedgerService."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import LedgerEntry
from story_ledger.services.ledger_service._usage import record_usage
from story_ledger.utils.exceptions import MalformedResponseError
from story_ledger.utils.validation import validate_not_empty, validate_unit_index

if TYPE_CHECKING:
    from story_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def extract_ledger(
    svc: LedgerService,
    work_id: str,
    unit_index: int,
    unit_text: str,
    unit_title: str = "",
) -> LedgerEntry | None:
    """Extract and store the ledger entry for a finished unit.

    The prior callback bank is taken from the latest entry before
    ``unit_index``. Re-extracting a unit replaces its entry and clears any
    cached summary.

    Parameters:
        svc: The LedgerService instance.
        work_id: Work the unit belongs to.
        unit_index: 1-based index of the unit.
        unit_text: Full text of the unit.
        unit_title: Optional title of the unit.

    Returns:
        The stored entry, or None when the model output was malformed.

    Raises:
        SchemaNotFoundError: If the work has no roster.
        PersistenceError: If the store cannot be read or written.
        LLMError: If the model could not be reached.
    """
    validate_not_empty(work_id, "work_id")
    validate_unit_index(unit_index)

    roster = svc.db.get_roster(work_id)
    prior = svc.db.get_latest_entry(work_id, before_unit=unit_index)
    prior_callbacks = prior.callback_bank if prior else []
    if prior is not None:
        logger.debug(
            "Carrying %d callbacks from %s unit %d", len(prior_callbacks), work_id, prior.unit_index
        )

    try:
        entry = svc.extractor.extract(
            work_id,
            unit_index,
            unit_text,
            roster,
            prior_callbacks=prior_callbacks,
            unit_title=unit_title,
        )
    except MalformedResponseError as e:
        logger.warning(
            "Ledger extraction for %s unit %d returned malformed output, skipping: %s",
            work_id,
            unit_index,
            e,
        )
        return None

    record_usage(svc, svc.extractor, work_id, "ledger_extraction", unit_index)
    svc.db.upsert_entry(entry)
    logger.info("Stored ledger entry for %s unit %d", work_id, unit_index)
    return entry
