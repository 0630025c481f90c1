"""Usage and cost records for LedgerDatabase."""

import logging
import sqlite3

from story_ledger.memory.cost_models import UsageRecord, UsageSummary
from story_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def record_usage(db, record: UsageRecord) -> int:
    """Insert a usage record and return its row id."""
    try:
        with db.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO usage_records (
                    work_id, unit_index, operation, model_id, agent_role,
                    input_tokens, output_tokens, total_tokens, cost_usd, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.work_id,
                    record.unit_index,
                    record.operation,
                    record.model_id,
                    record.agent_role,
                    record.input_tokens,
                    record.output_tokens,
                    record.total_tokens,
                    record.cost_usd,
                    record.created_at.isoformat(),
                ),
            )
            row_id = cursor.lastrowid or 0
    except sqlite3.Error as e:
        logger.error(
            "Failed to record usage for %s (%s): %s",
            record.work_id,
            record.operation,
            e,
            exc_info=True,
        )
        raise PersistenceError(f"Failed to record usage for {record.work_id}: {e}") from e
    logger.debug(
        "Recorded usage %s/%s: %d tokens, $%.6f",
        record.work_id,
        record.operation,
        record.total_tokens,
        record.cost_usd,
    )
    return row_id


def get_usage_summary(db, work_id: str) -> UsageSummary:
    """Totals and per-operation cost for a work."""
    try:
        with db.connection() as conn:
            rows = conn.execute(
                """
                SELECT operation, COUNT(*) AS calls, SUM(total_tokens) AS tokens,
                       SUM(cost_usd) AS cost
                FROM usage_records WHERE work_id = ?
                GROUP BY operation
                """,
                (work_id,),
            ).fetchall()
    except sqlite3.Error as e:
        logger.error("Failed to summarize usage for %s: %s", work_id, e, exc_info=True)
        raise PersistenceError(f"Failed to summarize usage for {work_id}: {e}") from e

    summary = UsageSummary(work_id=work_id)
    for row in rows:
        summary.call_count += row["calls"]
        summary.total_tokens += row["tokens"] or 0
        summary.total_cost_usd += row["cost"] or 0.0
        summary.by_operation[row["operation"]] = row["cost"] or 0.0
    return summary
