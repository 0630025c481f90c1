"""Voice review storage for LedgerDatabase."""

import logging
import sqlite3
from datetime import datetime

from story_ledger.memory.ledger_models import VoiceReview, VoiceReviewRecord
from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def upsert_review(db, record: VoiceReviewRecord) -> None:
    """Insert or replace the review for (work_id, unit_index)."""
    try:
        with db.connection() as conn:
            conn.execute(
                """
                INSERT INTO voice_reviews (
                    work_id, unit_index, review_data, flags_count, avg_score,
                    revision_applied, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(work_id, unit_index) DO UPDATE SET
                    review_data = excluded.review_data,
                    flags_count = excluded.flags_count,
                    avg_score = excluded.avg_score,
                    revision_applied = excluded.revision_applied,
                    created_at = excluded.created_at
                """,
                (
                    record.work_id,
                    record.unit_index,
                    record.review.model_dump_json(),
                    record.flags_count,
                    record.review.average_score,
                    int(record.revision_applied),
                    record.created_at.isoformat(),
                ),
            )
    except sqlite3.Error as e:
        logger.error(
            "Failed to save voice review %s/unit %d: %s",
            record.work_id,
            record.unit_index,
            e,
            exc_info=True,
        )
        raise PersistenceError(
            f"Failed to save voice review {record.work_id}/unit {record.unit_index}: {e}"
        ) from e
    logger.info(
        "Saved voice review %s/unit %d (%d flags)",
        record.work_id,
        record.unit_index,
        record.flags_count,
    )


def get_review(db, work_id: str, unit_index: int) -> VoiceReviewRecord | None:
    """Fetch the review for a unit, or None."""
    try:
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM voice_reviews WHERE work_id = ? AND unit_index = ?",
                (work_id, unit_index),
            ).fetchone()
    except sqlite3.Error as e:
        logger.error(
            "Failed to fetch voice review %s/unit %d: %s", work_id, unit_index, e, exc_info=True
        )
        raise PersistenceError(f"Failed to fetch voice review {work_id}/unit {unit_index}: {e}") from e
    if row is None:
        return None
    return VoiceReviewRecord(
        work_id=row["work_id"],
        unit_index=row["unit_index"],
        review=VoiceReview.model_validate_json(row["review_data"]),
        revision_applied=bool(row["revision_applied"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
