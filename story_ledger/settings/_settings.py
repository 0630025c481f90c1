"""Main Settings dataclass for Story Ledger.

Settings are stored in settings.json next to the package. Missing keys are
filled from defaults on load, so older files keep working as fields are added.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, ClassVar

from story_ledger.settings import _validation as _validation_mod
from story_ledger.settings._paths import DEFAULT_DB_PATH, SETTINGS_FILE
from story_ledger.settings._types import AGENT_ROLES, ModelPricing
from story_ledger.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Dict fields keyed by agent role; merged on load so new roles get defaults.
_ROLE_DICT_FIELDS = ("agent_models", "agent_temperatures", "model_pricing")


def _merge_with_defaults(data: dict[str, Any], settings_cls: type[Settings]) -> bool:
    """Merge loaded JSON data with dataclass defaults, in place.

    Adds missing keys, drops keys that no longer exist, and fills missing
    agent roles inside the role-keyed dict fields.

    Returns:
        True if any changes were made, False otherwise.
    """
    default_dict = asdict(settings_cls())
    known_fields = {f.name for f in fields(settings_cls)}
    changed = False

    for key in list(data):
        if key not in known_fields:
            logger.info("Removing obsolete setting: %s", key)
            del data[key]
            changed = True

    for key in known_fields:
        if key not in data:
            logger.info("Adding new setting with default: %s", key)
            data[key] = default_dict[key]
            changed = True

    for field_name in _ROLE_DICT_FIELDS:
        current = data[field_name]
        if not isinstance(current, dict):
            logger.warning("Resetting %s to default (expected dict)", field_name)
            data[field_name] = default_dict[field_name]
            changed = True
            continue
        for role, value in default_dict[field_name].items():
            if role not in current:
                logger.info("Adding new %s[%s] = %r", field_name, role, value)
                current[role] = value
                changed = True

    return changed


def _atomic_write_json(path: Path | str, data: dict[str, Any]) -> None:
    """Write JSON to *path* atomically via a temp file + rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError as cleanup_err:
            logger.warning("Failed to remove temp settings file %s: %s", tmp_path, cleanup_err)
        raise


def _default_pricing() -> dict[str, ModelPricing]:
    return {
        "extractor": {"input_per_million": 1.0, "output_per_million": 5.0},
        "compressor": {"input_per_million": 1.0, "output_per_million": 5.0},
        "reviewer": {"input_per_million": 3.0, "output_per_million": 15.0},
        "reviser": {"input_per_million": 3.0, "output_per_million": 15.0},
    }


@dataclass
class Settings:
    """Application settings, stored as JSON."""

    # Model provider
    ollama_url: str = "http://localhost:11434"
    ollama_timeout: float = 120.0
    context_size: int = 32768
    max_tokens: int = 8192
    log_level: str = "INFO"

    # Used for any role whose agent_models entry is "auto"
    default_model: str = "qwen3:14b"
    agent_models: dict[str, str] = field(
        default_factory=lambda: {role: "auto" for role in AGENT_ROLES}
    )
    agent_temperatures: dict[str, float] = field(
        default_factory=lambda: {
            "extractor": 0.3,
            "compressor": 0.3,
            "reviewer": 0.2,
            "reviser": 0.6,
        }
    )

    # Context assembly
    context_budget_tokens: int = 5000
    recency_window: int = 3
    fallback_recency_window: int = 2
    callback_prune_age: int = 3
    chars_per_token: int = 4

    # Voice review
    revision_score_threshold: float = 0.8
    review_pass_threshold: float = 0.85

    # Compression
    compression_min_words: int = 100
    compression_max_words: int = 150

    # Usage accounting, USD per million tokens
    model_pricing: dict[str, ModelPricing] = field(default_factory=_default_pricing)

    # LLM request handling
    llm_max_retries: int = 3
    llm_retry_delay: float = 2.0
    llm_retry_backoff: float = 2.0
    llm_max_concurrent_requests: int = 2

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_success_threshold: int = 2
    circuit_breaker_timeout: float = 60.0

    # Storage and prompts ("" means the packaged defaults)
    database_path: str = ""
    prompt_templates_dir: str = ""

    def save(self) -> None:
        """Validate and save settings to the JSON file."""
        self.validate()
        _atomic_write_json(SETTINGS_FILE, asdict(self))
        logger.info("Settings saved to %s", SETTINGS_FILE)

    def validate(self) -> None:
        """Validate all settings fields. Delegates to the _validation module.

        Raises:
            ValueError: If any field contains an invalid value.
        """
        _validation_mod.validate(self)

    _cached_instance: ClassVar[Settings | None] = None

    @classmethod
    def load(cls, use_cache: bool = True) -> Settings:
        """Load settings from the JSON file, or create defaults.

        Args:
            use_cache: If True, return the cached instance if available.

        Returns:
            Settings instance.

        Raises:
            ConfigError: If the file holds values that fail validation.
        """
        if use_cache and cls._cached_instance is not None:
            return cls._cached_instance

        data: dict[str, Any] = {}
        loaded_from_file = False
        if SETTINGS_FILE.exists():
            try:
                with open(SETTINGS_FILE) as f:
                    raw = json.load(f)
                if isinstance(raw, dict):
                    data = raw
                    loaded_from_file = True
                else:
                    logger.error(
                        "Corrupted settings file (expected JSON object, got %s)",
                        type(raw).__name__,
                    )
                    _backup_corrupt_file()
            except json.JSONDecodeError as e:
                logger.error("Corrupted settings file (invalid JSON): %s", e)
                _backup_corrupt_file()
            except OSError as e:
                logger.error("Cannot read settings file: %s", e)

        changed = _merge_with_defaults(data, cls)
        try:
            settings = cls(**data)
            settings.validate()
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid settings in {SETTINGS_FILE}: {e}") from e

        if changed or not loaded_from_file:
            try:
                _atomic_write_json(SETTINGS_FILE, asdict(settings))
                logger.info("Settings updated during load, saved to %s", SETTINGS_FILE)
            except OSError as write_err:
                logger.warning("Could not persist settings to disk: %s", write_err)

        cls._cached_instance = settings
        return settings

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the cached settings instance."""
        cls._cached_instance = None

    def get_model_for_agent(self, agent_role: str) -> str:
        """Return the model id configured for an agent role.

        Raises:
            ValueError: If agent_role is unknown.
        """
        if agent_role not in AGENT_ROLES:
            raise ValueError(
                f"Unknown agent role '{agent_role}' - must be one of: {sorted(AGENT_ROLES)}"
            )
        model = self.agent_models.get(agent_role, "auto")
        return self.default_model if model == "auto" else model

    def get_temperature_for_agent(self, agent_role: str) -> float:
        """Get temperature setting for an agent.

        Raises:
            ValueError: If agent_role is not configured in agent_temperatures.
        """
        if agent_role not in self.agent_temperatures:
            raise ValueError(
                f"Unknown agent role '{agent_role}' - must be one of: "
                f"{sorted(self.agent_temperatures.keys())}"
            )
        return float(self.agent_temperatures[agent_role])

    def get_pricing_for_agent(self, agent_role: str) -> ModelPricing:
        """Per-million token pricing for a role; zero when unpriced."""
        return self.model_pricing.get(
            agent_role, {"input_per_million": 0.0, "output_per_million": 0.0}
        )

    def get_database_path(self) -> Path:
        """Resolved SQLite path for the ledger store."""
        return Path(self.database_path) if self.database_path else DEFAULT_DB_PATH

    def get_recency_windows(self) -> tuple[int, ...]:
        """Window sizes tried by the context assembler, widest first."""
        if self.fallback_recency_window >= self.recency_window:
            return (self.recency_window,)
        return (self.recency_window, self.fallback_recency_window)


def _backup_corrupt_file() -> None:
    backup_path = SETTINGS_FILE.with_suffix(".json.corrupt")
    try:
        shutil.copy(SETTINGS_FILE, backup_path)
        logger.info("Backed up corrupted settings to %s", backup_path)
    except OSError as copy_err:
        logger.warning("Failed to backup corrupted settings: %s", copy_err)
