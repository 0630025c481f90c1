"""Usage recording for LedgerService."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from story_ledger.memory.cost_models import build_usage_record
from story_ledger.utils.exceptions import PersistenceError

if TYPE_CHECKING:
    from story_ledger.agents.base import BaseAgent
    from story_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def record_usage(
    svc: LedgerService,
    agent: BaseAgent,
    work_id: str,
    operation: str,
    unit_index: int | None = None,
) -> None:
    """Price and store the agent's most recent call.

    Observation only: a failed write is logged and never raised.
    """
    metrics = agent.last_generation_metrics
    if metrics is None:
        logger.debug("No generation metrics from %s for %s; nothing to record", agent.name, operation)
        return

    record = build_usage_record(
        metrics,
        work_id=work_id,
        operation=operation,
        pricing=svc.settings.get_pricing_for_agent(agent.agent_role),
        unit_index=unit_index,
    )
    try:
        svc.db.record_usage(record)
    except PersistenceError as e:
        logger.warning("Failed to record usage for %s on %s: %s", operation, work_id, e)
        return
    logger.debug(
        "Recorded %s usage for %s: %d tokens, $%.6f",
        operation,
        work_id,
        record.total_tokens,
        record.cost_usd,
    )
