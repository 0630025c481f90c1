"""Tests for the settings module."""

import json

import pytest

import story_ledger.settings._settings as settings_module
from story_ledger.settings import AGENT_ROLES, Settings
from story_ledger.utils.exceptions import ConfigError


class TestSettings:
    """Tests for Settings defaults and lookups."""

    def test_default_values(self):
        """Defaults match the documented continuity behavior."""
        settings = Settings()
        assert settings.context_budget_tokens == 5000
        assert settings.recency_window == 3
        assert settings.fallback_recency_window == 2
        assert settings.callback_prune_age == 3
        assert settings.revision_score_threshold == 0.8
        assert settings.review_pass_threshold == 0.85
        assert (settings.compression_min_words, settings.compression_max_words) == (100, 150)

    def test_every_role_configured(self):
        """Each agent role has a model, temperature and price."""
        settings = Settings()
        for role in AGENT_ROLES:
            assert settings.agent_models[role] == "auto"
            assert role in settings.agent_temperatures
            assert role in settings.model_pricing

    def test_model_resolution(self):
        """'auto' resolves to default_model; explicit entries are used as-is."""
        settings = Settings(default_model="base:7b")
        settings.agent_models["reviewer"] = "judge:32b"

        assert settings.get_model_for_agent("extractor") == "base:7b"
        assert settings.get_model_for_agent("reviewer") == "judge:32b"

    def test_unknown_role(self):
        """Unknown roles are rejected."""
        settings = Settings()
        with pytest.raises(ValueError, match="Unknown agent role"):
            settings.get_model_for_agent("writer")
        with pytest.raises(ValueError, match="Unknown agent role"):
            settings.get_temperature_for_agent("writer")

    def test_pricing_for_unpriced_role(self):
        """Roles without pricing cost nothing."""
        settings = Settings(model_pricing={})
        assert settings.get_pricing_for_agent("extractor") == {
            "input_per_million": 0.0,
            "output_per_million": 0.0,
        }

    def test_recency_windows(self):
        """The fallback window is tried only when it is smaller."""
        assert Settings().get_recency_windows() == (3, 2)
        assert Settings(recency_window=2, fallback_recency_window=2).get_recency_windows() == (2,)

    def test_database_path(self, tmp_path):
        """An empty database_path means the default location."""
        assert Settings().get_database_path() == settings_module.DEFAULT_DB_PATH
        custom = Settings(database_path=str(tmp_path / "x.db"))
        assert custom.get_database_path() == tmp_path / "x.db"


class TestSettingsValidation:
    """Tests for Settings.validate."""

    def test_defaults_are_valid(self):
        """The default settings pass validation."""
        Settings().validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"log_level": "LOUD"},
            {"ollama_url": "ftp://localhost"},
            {"ollama_url": "http://"},
            {"context_budget_tokens": 100},
            {"recency_window": 3, "fallback_recency_window": 3},
            {"revision_score_threshold": 1.5},
            {"compression_min_words": 200, "compression_max_words": 150},
            {"ollama_timeout": 0.5},
            {"llm_max_retries": 0},
            {"circuit_breaker_timeout": 0.0},
        ],
    )
    def test_invalid_values(self, overrides):
        """Out-of-range values fail validation."""
        with pytest.raises(ValueError):
            Settings(**overrides).validate()

    def test_invalid_temperature(self):
        """Temperatures must be within [0, 2]."""
        settings = Settings()
        settings.agent_temperatures["reviser"] = 2.5
        with pytest.raises(ValueError, match="reviser"):
            settings.validate()

    def test_negative_price(self):
        """Prices cannot be negative."""
        settings = Settings()
        settings.model_pricing["reviewer"] = {"input_per_million": -1.0, "output_per_million": 1.0}
        with pytest.raises(ValueError, match="model_pricing"):
            settings.validate()


class TestSettingsPersistence:
    """Tests for loading and saving settings."""

    def test_load_creates_file(self):
        """A first load writes the defaults to disk."""
        settings = Settings.load()

        assert settings == Settings()
        assert settings_module.SETTINGS_FILE.exists()

    def test_load_is_cached(self):
        """Repeated loads return the same instance until the cache is cleared."""
        first = Settings.load()
        assert Settings.load() is first
        assert Settings.load(use_cache=False) is not first

    def test_save_and_reload(self):
        """Saved values survive a reload."""
        settings = Settings(context_budget_tokens=3000, log_level="DEBUG")
        settings.save()

        loaded = Settings.load(use_cache=False)

        assert loaded.context_budget_tokens == 3000
        assert loaded.log_level == "DEBUG"

    def test_missing_and_obsolete_keys_merged(self):
        """Old files gain new keys and lose removed ones."""
        settings_module.SETTINGS_FILE.write_text(
            json.dumps(
                {
                    "recency_window": 4,
                    "interaction_mode": "checkpoint",
                    "agent_temperatures": {"extractor": 0.1},
                }
            )
        )

        loaded = Settings.load(use_cache=False)

        assert loaded.recency_window == 4
        assert loaded.agent_temperatures["extractor"] == 0.1
        assert loaded.agent_temperatures["reviser"] == 0.6
        on_disk = json.loads(settings_module.SETTINGS_FILE.read_text())
        assert "interaction_mode" not in on_disk
        assert on_disk["context_budget_tokens"] == 5000

    def test_corrupt_file_backed_up(self):
        """Invalid JSON is backed up and replaced with defaults."""
        settings_module.SETTINGS_FILE.write_text("{not json")

        loaded = Settings.load(use_cache=False)

        assert loaded == Settings()
        assert settings_module.SETTINGS_FILE.with_suffix(".json.corrupt").exists()

    def test_invalid_values_raise_config_error(self):
        """A file with out-of-range values is a configuration error."""
        settings_module.SETTINGS_FILE.write_text(json.dumps({"context_budget_tokens": 5}))

        with pytest.raises(ConfigError, match="context_budget_tokens"):
            Settings.load(use_cache=False)

    def test_save_rejects_invalid(self):
        """Invalid settings are never written."""
        with pytest.raises(ValueError):
            Settings(llm_max_retries=0).save()
        assert not settings_module.SETTINGS_FILE.exists()
