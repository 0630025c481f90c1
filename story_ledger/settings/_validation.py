"""Validation functions for Settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from story_ledger.settings._types import AGENT_ROLES, LOG_LEVELS

if TYPE_CHECKING:
    from story_ledger.settings._settings import Settings

logger = logging.getLogger(__name__)


def validate(settings: Settings) -> None:
    """Validate all settings fields.

    Raises:
        ValueError: If any field contains an invalid value.
    """
    _validate_log_level(settings)
    _validate_url(settings)
    _validate_agent_maps(settings)
    _validate_context_budget(settings)
    _validate_review_thresholds(settings)
    _validate_compression(settings)
    _validate_pricing(settings)
    _validate_llm_requests(settings)
    _validate_circuit_breaker(settings)
    logger.debug("Settings validated")


def _validate_log_level(settings: Settings) -> None:
    if settings.log_level not in LOG_LEVELS:
        raise ValueError(f"log_level must be one of {list(LOG_LEVELS)}, got {settings.log_level}")


def _validate_url(settings: Settings) -> None:
    """Validate URL format for ollama_url."""
    parsed = urlparse(str(settings.ollama_url))
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Invalid URL scheme in ollama_url: {settings.ollama_url}")
    if not parsed.netloc:
        raise ValueError(f"Invalid URL (missing host) in ollama_url: {settings.ollama_url}")


def _validate_agent_maps(settings: Settings) -> None:
    """Every agent role needs a model entry and a temperature in [0, 2]."""
    for role in AGENT_ROLES:
        if role not in settings.agent_models:
            raise ValueError(f"agent_models is missing role '{role}'")
        if role not in settings.agent_temperatures:
            raise ValueError(f"agent_temperatures is missing role '{role}'")
        temp = settings.agent_temperatures[role]
        if not 0.0 <= temp <= 2.0:
            raise ValueError(f"Temperature for {role} must be between 0.0 and 2.0, got {temp}")


def _validate_context_budget(settings: Settings) -> None:
    if not 500 <= settings.context_budget_tokens <= 100000:
        raise ValueError(
            f"context_budget_tokens must be between 500 and 100000, "
            f"got {settings.context_budget_tokens}"
        )
    if not 1 <= settings.recency_window <= 20:
        raise ValueError(f"recency_window must be between 1 and 20, got {settings.recency_window}")
    if not 0 <= settings.fallback_recency_window < settings.recency_window:
        raise ValueError(
            f"fallback_recency_window must be >= 0 and smaller than recency_window "
            f"({settings.recency_window}), got {settings.fallback_recency_window}"
        )
    if not 1 <= settings.callback_prune_age <= 50:
        raise ValueError(
            f"callback_prune_age must be between 1 and 50, got {settings.callback_prune_age}"
        )
    if not 1 <= settings.chars_per_token <= 10:
        raise ValueError(f"chars_per_token must be between 1 and 10, got {settings.chars_per_token}")


def _validate_review_thresholds(settings: Settings) -> None:
    for name in ("revision_score_threshold", "review_pass_threshold"):
        value = getattr(settings, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")


def _validate_compression(settings: Settings) -> None:
    if not 20 <= settings.compression_min_words <= settings.compression_max_words <= 1000:
        raise ValueError(
            f"compression word range must satisfy 20 <= min <= max <= 1000, "
            f"got {settings.compression_min_words}-{settings.compression_max_words}"
        )


def _validate_pricing(settings: Settings) -> None:
    for role, pricing in settings.model_pricing.items():
        if role not in AGENT_ROLES:
            raise ValueError(f"model_pricing has unknown role '{role}'")
        for key in ("input_per_million", "output_per_million"):
            if pricing.get(key, -1) < 0:
                raise ValueError(f"model_pricing[{role}].{key} must be >= 0")


def _validate_llm_requests(settings: Settings) -> None:
    if not 1.0 <= settings.ollama_timeout <= 3600.0:
        raise ValueError(
            f"ollama_timeout must be between 1 and 3600 seconds, got {settings.ollama_timeout}"
        )
    if not 1 <= settings.llm_max_retries <= 10:
        raise ValueError(f"llm_max_retries must be between 1 and 10, got {settings.llm_max_retries}")
    if not 0.0 <= settings.llm_retry_delay <= 60.0:
        raise ValueError(f"llm_retry_delay must be between 0 and 60, got {settings.llm_retry_delay}")
    if not 1.0 <= settings.llm_retry_backoff <= 10.0:
        raise ValueError(
            f"llm_retry_backoff must be between 1.0 and 10.0, got {settings.llm_retry_backoff}"
        )
    if not 1 <= settings.llm_max_concurrent_requests <= 32:
        raise ValueError(
            f"llm_max_concurrent_requests must be between 1 and 32, "
            f"got {settings.llm_max_concurrent_requests}"
        )
    if not 1024 <= settings.context_size <= 128000:
        raise ValueError(
            f"context_size must be between 1024 and 128000, got {settings.context_size}"
        )
    if not 256 <= settings.max_tokens <= 32000:
        raise ValueError(f"max_tokens must be between 256 and 32000, got {settings.max_tokens}")


def _validate_circuit_breaker(settings: Settings) -> None:
    if not 1 <= settings.circuit_breaker_failure_threshold <= 20:
        raise ValueError(
            f"circuit_breaker_failure_threshold must be between 1 and 20, "
            f"got {settings.circuit_breaker_failure_threshold}"
        )
    if not 1 <= settings.circuit_breaker_success_threshold <= 10:
        raise ValueError(
            f"circuit_breaker_success_threshold must be between 1 and 10, "
            f"got {settings.circuit_breaker_success_threshold}"
        )
    if not 1.0 <= settings.circuit_breaker_timeout <= 600.0:
        raise ValueError(
            f"circuit_breaker_timeout must be between 1.0 and 600.0 seconds, "
            f"got {settings.circuit_breaker_timeout}"
        )
