"""Work and roster storage for LedgerDatabase."""

import logging
import sqlite3

from story_ledger.memory.ledger_models import CharacterRoster, Work
from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def _row_to_work(row: sqlite3.Row) -> Work:
    return Work(
        id=row["id"],
        title=row["title"],
        series_id=row["series_id"],
        sequence_number=row["sequence_number"],
        parent_work_id=row["parent_work_id"],
    )


def upsert_work(db, work: Work) -> None:
    """Insert or update a work by id."""
    try:
        with db.connection() as conn:
            conn.execute(
                """
                INSERT INTO works (id, title, series_id, sequence_number, parent_work_id)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    series_id = excluded.series_id,
                    sequence_number = excluded.sequence_number,
                    parent_work_id = excluded.parent_work_id
                """,
                (work.id, work.title, work.series_id, work.sequence_number, work.parent_work_id),
            )
    except sqlite3.Error as e:
        logger.error("Failed to save work %s: %s", work.id, e, exc_info=True)
        raise PersistenceError(f"Failed to save work {work.id}: {e}") from e
    logger.debug("Saved work %s (series=%s, #%d)", work.id, work.series_id, work.sequence_number)


def get_work(db, work_id: str) -> Work | None:
    """Fetch a work by id, or None if unknown."""
    try:
        with db.connection() as conn:
            row = conn.execute("SELECT * FROM works WHERE id = ?", (work_id,)).fetchone()
    except sqlite3.Error as e:
        logger.error("Failed to fetch work %s: %s", work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to fetch work {work_id}: {e}") from e
    return _row_to_work(row) if row else None


def get_series_works(db, series_id: str, before_sequence: int) -> list[Work]:
    """Works in a series with a lower sequence number, ascending."""
    try:
        with db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM works
                WHERE series_id = ? AND sequence_number < ?
                ORDER BY sequence_number ASC
                """,
                (series_id, before_sequence),
            ).fetchall()
    except sqlite3.Error as e:
        logger.error("Failed to fetch series %s: %s", series_id, e, exc_info=True)
        raise PersistenceError(f"Failed to fetch series {series_id}: {e}") from e
    return [_row_to_work(row) for row in rows]


def save_roster(db, roster: CharacterRoster) -> None:
    """Store the character roster for a work, replacing any previous one."""
    try:
        with db.connection() as conn:
            conn.execute(
                """
                INSERT INTO rosters (work_id, roster_data, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(work_id) DO UPDATE SET
                    roster_data = excluded.roster_data,
                    updated_at = excluded.updated_at
                """,
                (roster.work_id, roster.model_dump_json()),
            )
    except sqlite3.Error as e:
        logger.error("Failed to save roster for %s: %s", roster.work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to save roster for {roster.work_id}: {e}") from e
    logger.debug("Saved roster for %s (%d characters)", roster.work_id, len(roster.characters))


def get_roster(db, work_id: str) -> CharacterRoster | None:
    """Fetch the roster for a work, or None if none was registered."""
    try:
        with db.connection() as conn:
            row = conn.execute(
                "SELECT roster_data FROM rosters WHERE work_id = ?", (work_id,)
            ).fetchone()
    except sqlite3.Error as e:
        logger.error("Failed to fetch roster for %s: %s", work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to fetch roster for {work_id}: {e}") from e
    return CharacterRoster.model_validate_json(row["roster_data"]) if row else None
