"""Continuity health metrics for LedgerDatabase."""

import logging
import sqlite3

from pydantic import TypeAdapter

from story_ledger.memory.ledger_models import Callback, CallbackStatus, ContinuityHealthMetrics
from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

_callbacks_adapter = TypeAdapter(list[Callback])


def get_health_metrics(db, pass_threshold: float = 0.85) -> ContinuityHealthMetrics:
    """Aggregate ledger, review and callback numbers across all works.

    Callback utilization is measured on each work's latest callback bank,
    since earlier banks are snapshots of the same callbacks.

    Args:
        db: LedgerDatabase instance.
        pass_threshold: Average authenticity a review needs to count as a pass.
    """
    try:
        with db.connection() as conn:
            ledger = conn.execute(
                """
                SELECT COUNT(*) AS entries, COUNT(DISTINCT work_id) AS works,
                       AVG(token_estimate) AS avg_tokens
                FROM ledger_entries
                """
            ).fetchone()
            reviews = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       SUM(revision_applied) AS revised,
                       AVG(avg_score) AS avg_score,
                       SUM(CASE WHEN avg_score >= ? THEN 1 ELSE 0 END) AS passed
                FROM voice_reviews
                """,
                (pass_threshold,),
            ).fetchone()
            banks = conn.execute(
                """
                SELECT e.callback_bank FROM ledger_entries e
                WHERE e.unit_index = (
                    SELECT MAX(unit_index) FROM ledger_entries WHERE work_id = e.work_id
                )
                """
            ).fetchall()
    except sqlite3.Error as e:
        logger.error("Failed to compute continuity health metrics: %s", e, exc_info=True)
        raise PersistenceError(f"Failed to compute continuity health metrics: {e}") from e

    metrics = ContinuityHealthMetrics(
        works_tracked=ledger["works"],
        ledger_entries=ledger["entries"],
        avg_token_estimate=round(ledger["avg_tokens"] or 0.0, 1),
        reviews_total=reviews["total"],
        revisions_applied=reviews["revised"] or 0,
        avg_authenticity=(
            round(reviews["avg_score"], 3) if reviews["avg_score"] is not None else None
        ),
    )
    if metrics.reviews_total:
        metrics.revision_rate = round(metrics.revisions_applied / metrics.reviews_total, 3)
        metrics.review_pass_rate = round((reviews["passed"] or 0) / metrics.reviews_total, 3)

    for row in banks:
        bank = _callbacks_adapter.validate_json(row["callback_bank"])
        metrics.callbacks_total += len(bank)
        metrics.callbacks_used += sum(1 for cb in bank if cb.status == CallbackStatus.USED)
    if metrics.callbacks_total:
        metrics.callback_utilization = round(metrics.callbacks_used / metrics.callbacks_total, 3)

    logger.debug("Continuity health metrics: %s", metrics)
    return metrics
