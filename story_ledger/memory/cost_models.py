"""Usage and cost models for model-provider calls.

Usage accounting is an observation: nothing in the ledger depends on it.
"""

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from story_ledger.settings import ModelPricing

logger = logging.getLogger(__name__)


class GenerationMetrics(BaseModel):
    """Metrics from a single model call.

    Extracted from Ollama response fields:
    - prompt_eval_count: tokens in the prompt
    - eval_count: tokens generated
    """

    prompt_tokens: int | None = Field(default=None, ge=0)
    completion_tokens: int | None = Field(default=None, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    time_seconds: float = Field(default=0.0, ge=0)
    model_id: str = ""
    agent_role: str = ""

    @property
    def tokens_per_second(self) -> float | None:
        """Completion throughput, or None if it cannot be computed."""
        if self.time_seconds > 0 and self.completion_tokens:
            return self.completion_tokens / self.time_seconds
        return None


class UsageRecord(BaseModel):
    """One priced model call, as stored in the usage table."""

    work_id: str
    operation: str
    model_id: str = ""
    agent_role: str = ""
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0)
    unit_index: int | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class UsageSummary(BaseModel):
    """Usage totals for one work."""

    work_id: str
    call_count: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    by_operation: dict[str, float] = Field(default_factory=dict)


def calculate_cost(input_tokens: int, output_tokens: int, pricing: ModelPricing) -> float:
    """Price a call from its token counts and per-million rates."""
    input_cost = (input_tokens / 1_000_000) * pricing["input_per_million"]
    output_cost = (output_tokens / 1_000_000) * pricing["output_per_million"]
    return input_cost + output_cost


def build_usage_record(
    metrics: GenerationMetrics,
    work_id: str,
    operation: str,
    pricing: ModelPricing,
    unit_index: int | None = None,
) -> UsageRecord:
    """Turn raw generation metrics into a priced usage record."""
    input_tokens = metrics.prompt_tokens or 0
    output_tokens = metrics.completion_tokens or 0
    return UsageRecord(
        work_id=work_id,
        operation=operation,
        model_id=metrics.model_id,
        agent_role=metrics.agent_role,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cost_usd=calculate_cost(input_tokens, output_tokens, pricing),
        unit_index=unit_index,
    )
