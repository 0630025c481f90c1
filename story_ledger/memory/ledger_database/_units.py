"""Unit content storage for LedgerDatabase."""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any

from story_ledger.memory.ledger_models import UnitRecord
from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

_UPSERT_UNIT = """
    INSERT INTO units (work_id, unit_index, content, metadata, updated_at)
    VALUES (?, ?, ?, ?, ?)
    ON CONFLICT(work_id, unit_index) DO UPDATE SET
        content = excluded.content,
        metadata = excluded.metadata,
        updated_at = excluded.updated_at
"""


def save_unit(
    db, work_id: str, unit_index: int, content: str, metadata: dict[str, Any] | None = None
) -> UnitRecord:
    """Insert or replace a unit's content."""
    record = UnitRecord(
        work_id=work_id, unit_index=unit_index, content=content, metadata=metadata or {}
    )
    try:
        with db.connection() as conn:
            conn.execute(
                _UPSERT_UNIT,
                (
                    work_id,
                    unit_index,
                    content,
                    json.dumps(record.metadata),
                    record.updated_at.isoformat(),
                ),
            )
    except sqlite3.Error as e:
        logger.error("Failed to save unit %s/%d: %s", work_id, unit_index, e, exc_info=True)
        raise PersistenceError(f"Failed to save unit {work_id}/{unit_index}: {e}") from e
    logger.debug("Saved unit %s/%d (%d chars)", work_id, unit_index, len(content))
    return record


def get_unit(db, work_id: str, unit_index: int) -> UnitRecord | None:
    """Fetch a unit's content, or None."""
    try:
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM units WHERE work_id = ? AND unit_index = ?",
                (work_id, unit_index),
            ).fetchone()
    except sqlite3.Error as e:
        logger.error("Failed to fetch unit %s/%d: %s", work_id, unit_index, e, exc_info=True)
        raise PersistenceError(f"Failed to fetch unit {work_id}/{unit_index}: {e}") from e
    if row is None:
        return None
    return UnitRecord(
        work_id=row["work_id"],
        unit_index=row["unit_index"],
        content=row["content"],
        metadata=json.loads(row["metadata"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def apply_unit_revision(db, work_id: str, unit_index: int, content: str) -> UnitRecord:
    """Replace a unit's content with revised text and mark both records revised.

    The unit's metadata gains ``voice_revision: true`` and the unit's voice
    review gets ``revision_applied = 1``, in a single transaction.
    """
    updated_at = datetime.now()
    try:
        with db.connection() as conn:
            row = conn.execute(
                "SELECT metadata FROM units WHERE work_id = ? AND unit_index = ?",
                (work_id, unit_index),
            ).fetchone()
            metadata = json.loads(row["metadata"]) if row else {}
            metadata["voice_revision"] = True
            metadata["voice_revised_at"] = updated_at.isoformat()
            conn.execute(
                _UPSERT_UNIT,
                (work_id, unit_index, content, json.dumps(metadata), updated_at.isoformat()),
            )
            conn.execute(
                """
                UPDATE voice_reviews SET revision_applied = 1
                WHERE work_id = ? AND unit_index = ?
                """,
                (work_id, unit_index),
            )
    except sqlite3.Error as e:
        logger.error(
            "Failed to apply revision to unit %s/%d: %s", work_id, unit_index, e, exc_info=True
        )
        raise PersistenceError(
            f"Failed to apply revision to unit {work_id}/{unit_index}: {e}"
        ) from e
    logger.info("Applied voice revision to unit %s/%d (%d chars)", work_id, unit_index, len(content))
    return UnitRecord(
        work_id=work_id,
        unit_index=unit_index,
        content=content,
        metadata=metadata,
        updated_at=updated_at,
    )
