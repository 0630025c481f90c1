"""Ledger entry storage for LedgerDatabase.

Entries are upserted by (work_id, unit_index). Re-extracting a unit
replaces its row and clears the cached summary, since the summary
described the previous extraction.
"""

import json
import logging
import sqlite3
from datetime import datetime

from pydantic import TypeAdapter

from story_ledger.memory.ledger_models import (
    Callback,
    CharacterState,
    GroupDynamics,
    LedgerEntry,
)
from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

_callbacks_adapter = TypeAdapter(list[Callback])
_states_adapter = TypeAdapter(dict[str, CharacterState])


def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
    ledger_data = json.loads(row["ledger_data"])
    return LedgerEntry(
        work_id=row["work_id"],
        unit_index=row["unit_index"],
        unit_title=row["unit_title"],
        character_states=_states_adapter.validate_python(ledger_data.get("character_states", {})),
        group_dynamics=GroupDynamics.model_validate(ledger_data.get("group_dynamics", {})),
        callback_bank=_callbacks_adapter.validate_json(row["callback_bank"]),
        compressed_summary=row["compressed_summary"],
        token_estimate=row["token_estimate"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def upsert_entry(db, entry: LedgerEntry) -> None:
    """Insert or replace the entry for (work_id, unit_index)."""
    ledger_data = json.dumps(
        {
            "character_states": {
                name: state.model_dump(mode="json")
                for name, state in entry.character_states.items()
            },
            "group_dynamics": entry.group_dynamics.model_dump(mode="json"),
        },
        ensure_ascii=False,
    )
    callback_bank = _callbacks_adapter.dump_json(entry.callback_bank).decode()
    try:
        with db.connection() as conn:
            conn.execute(
                """
                INSERT INTO ledger_entries (
                    work_id, unit_index, unit_title, ledger_data, callback_bank,
                    compressed_summary, token_estimate, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(work_id, unit_index) DO UPDATE SET
                    unit_title = excluded.unit_title,
                    ledger_data = excluded.ledger_data,
                    callback_bank = excluded.callback_bank,
                    compressed_summary = excluded.compressed_summary,
                    token_estimate = excluded.token_estimate,
                    created_at = excluded.created_at
                """,
                (
                    entry.work_id,
                    entry.unit_index,
                    entry.unit_title,
                    ledger_data,
                    callback_bank,
                    entry.compressed_summary,
                    entry.token_estimate,
                    entry.created_at.isoformat(),
                ),
            )
    except sqlite3.Error as e:
        logger.error(
            "Failed to save ledger entry %s/unit %d: %s",
            entry.work_id,
            entry.unit_index,
            e,
            exc_info=True,
        )
        raise PersistenceError(
            f"Failed to save ledger entry {entry.work_id}/unit {entry.unit_index}: {e}"
        ) from e
    logger.info(
        "Saved ledger entry %s/unit %d (%d characters, %d callbacks, ~%d tokens)",
        entry.work_id,
        entry.unit_index,
        len(entry.character_states),
        len(entry.callback_bank),
        entry.token_estimate,
    )


def get_entries(db, work_id: str, newest_first: bool = True) -> list[LedgerEntry]:
    """All entries for a work, ordered by unit index."""
    order = "DESC" if newest_first else "ASC"
    try:
        with db.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM ledger_entries WHERE work_id = ? ORDER BY unit_index {order}",
                (work_id,),
            ).fetchall()
    except sqlite3.Error as e:
        logger.error("Failed to fetch ledger entries for %s: %s", work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to fetch ledger entries for {work_id}: {e}") from e
    return [_row_to_entry(row) for row in rows]


def get_latest_entry(db, work_id: str, before_unit: int | None = None) -> LedgerEntry | None:
    """The highest-unit entry, optionally restricted to units before ``before_unit``."""
    query = "SELECT * FROM ledger_entries WHERE work_id = ?"
    params: tuple = (work_id,)
    if before_unit is not None:
        query += " AND unit_index < ?"
        params = (work_id, before_unit)
    query += " ORDER BY unit_index DESC LIMIT 1"
    try:
        with db.connection() as conn:
            row = conn.execute(query, params).fetchone()
    except sqlite3.Error as e:
        logger.error("Failed to fetch latest entry for %s: %s", work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to fetch latest entry for {work_id}: {e}") from e
    return _row_to_entry(row) if row else None


def count_entries(db, work_id: str) -> int:
    """Number of ledger entries recorded for a work."""
    try:
        with db.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM ledger_entries WHERE work_id = ?", (work_id,)
            ).fetchone()
    except sqlite3.Error as e:
        logger.error("Failed to count entries for %s: %s", work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to count entries for {work_id}: {e}") from e
    return int(row[0])


def set_compressed_summary(db, work_id: str, unit_index: int, summary: str) -> bool:
    """Store a summary only if the entry does not have one yet.

    Returns:
        True if the summary was written, False if one already existed
        (or the entry does not exist).
    """
    try:
        with db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE ledger_entries SET compressed_summary = ?
                WHERE work_id = ? AND unit_index = ? AND compressed_summary IS NULL
                """,
                (summary, work_id, unit_index),
            )
            written = cursor.rowcount == 1
    except sqlite3.Error as e:
        logger.error(
            "Failed to store summary for %s/unit %d: %s", work_id, unit_index, e, exc_info=True
        )
        raise PersistenceError(
            f"Failed to store summary for {work_id}/unit {unit_index}: {e}"
        ) from e
    if written:
        logger.debug("Cached compressed summary for %s/unit %d", work_id, unit_index)
    else:
        logger.debug("Summary for %s/unit %d already present, kept existing", work_id, unit_index)
    return written
