"""Voice review and surgical revision for LedgerService."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from story_ledger.memory.ledger_models import VoiceReviewRecord
from story_ledger.services.ledger_service._usage import record_usage
from story_ledger.utils.exceptions import LLMError, MalformedResponseError
from story_ledger.utils.validation import validate_not_empty, validate_unit_index

if TYPE_CHECKING:
    from story_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def review_unit(
    svc: LedgerService, work_id: str, unit_index: int, unit_text: str
) -> VoiceReviewRecord | None:
    """Review a unit's character voices and store the result.

    Parameters:
        svc: The LedgerService instance.
        work_id: Work the unit belongs to.
        unit_index: Index of the unit under review.
        unit_text: The unit text.

    Returns:
        The stored review record, or None when the work has no ledger
        history or the model output was malformed.

    Raises:
        SchemaNotFoundError: If the work has no roster.
        PersistenceError: If the store cannot be read or written.
        LLMError: If the model could not be reached.
    """
    validate_not_empty(work_id, "work_id")
    validate_unit_index(unit_index)

    history = svc.db.get_entries(work_id, newest_first=True)
    if not history:
        logger.info("No ledger history for %s; skipping voice review of unit %d", work_id, unit_index)
        return None

    roster = svc.db.get_roster(work_id)
    try:
        review = svc.reviewer.review(unit_index, unit_text, history, roster)
    except MalformedResponseError as e:
        logger.warning(
            "Voice review for %s unit %d returned malformed output, skipping: %s",
            work_id,
            unit_index,
            e,
        )
        return None

    record_usage(svc, svc.reviewer, work_id, "voice_review", unit_index)
    record = VoiceReviewRecord(work_id=work_id, unit_index=unit_index, review=review)
    svc.db.upsert_review(record)
    logger.info(
        "Stored voice review for %s unit %d (%d flags)", work_id, unit_index, record.flags_count
    )
    return record


def revise_unit(
    svc: LedgerService,
    work_id: str,
    unit_index: int,
    unit_text: str,
    review: VoiceReviewRecord | None = None,
) -> str | None:
    """Revise a unit when its review crossed the threshold.

    The revised text replaces the stored unit content, and the unit and
    its review are marked revised in the same transaction. A failed model
    call leaves the original content untouched.

    Parameters:
        svc: The LedgerService instance.
        work_id: Work the unit belongs to.
        unit_index: Index of the unit.
        unit_text: The original unit text.
        review: The unit's review; loaded from the store when None.

    Returns:
        The revised text, or None when no revision was needed or possible.

    Raises:
        PersistenceError: If the store cannot be read or written.
    """
    validate_not_empty(work_id, "work_id")
    validate_unit_index(unit_index)

    record = review or svc.db.get_review(work_id, unit_index)
    if record is None:
        logger.debug("No voice review for %s unit %d; nothing to revise", work_id, unit_index)
        return None
    if record.revision_applied:
        logger.info("Unit %s/%d was already revised; skipping", work_id, unit_index)
        return None

    try:
        revised = svc.reviser.revise(unit_index, unit_text, record.review)
    except LLMError as e:
        logger.warning(
            "Voice revision for %s unit %d failed; keeping original text: %s",
            work_id,
            unit_index,
            e,
        )
        return None
    if revised is None:
        return None

    record_usage(svc, svc.reviser, work_id, "voice_revision", unit_index)
    svc.db.apply_unit_revision(work_id, unit_index, revised)
    return revised
