"""Pytest fixtures for Story Ledger tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from story_ledger.memory.ledger_database import LedgerDatabase
from story_ledger.memory.ledger_models import CharacterRoster, RosterCharacter, Work
from story_ledger.settings import Settings


@pytest.fixture(autouse=True, scope="function")
def cleanup_production_log_handlers():
    """Remove file handlers pointing to the production log after each test.

    Tests that call setup_logging() with the default log file would otherwise
    leave a handler writing to logs/story_ledger.log.
    """
    yield

    root_logger = logging.getLogger()
    production_log_name = "story_ledger.log"

    handlers_to_remove = []
    for handler in root_logger.handlers:
        if isinstance(handler, logging.FileHandler):
            if hasattr(handler, "baseFilename") and production_log_name in handler.baseFilename:
                handlers_to_remove.append(handler)

    for handler in handlers_to_remove:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def clear_settings_cache_per_test():
    """Clear Settings cache before each test to ensure isolation."""
    Settings.clear_cache()
    yield
    Settings.clear_cache()


@pytest.fixture(autouse=True)
def clear_prompt_registry_cache_per_test():
    """Clear the shared prompt registry so template changes do not leak between tests."""
    from story_ledger.agents.base import reset_prompt_registry

    reset_prompt_registry()
    yield
    reset_prompt_registry()


@pytest.fixture(autouse=True)
def reset_circuit_breaker_per_test():
    """Reset the global circuit breaker so failures in one test cannot open it for the next."""
    from story_ledger.utils.circuit_breaker import reset_global_circuit_breaker

    reset_global_circuit_breaker()
    yield
    reset_global_circuit_breaker()


@pytest.fixture(autouse=True)
def isolate_storage(tmp_path, monkeypatch):
    """Redirect the settings file and default database into the temp directory.

    Without this, any test that calls Settings.load() or opens a
    LedgerDatabase without a path would write to the real project tree.
    """
    import story_ledger.memory.ledger_database as ledger_database_module
    import story_ledger.settings._settings as settings_module

    monkeypatch.setattr(settings_module, "SETTINGS_FILE", tmp_path / "settings.json")
    monkeypatch.setattr(settings_module, "DEFAULT_DB_PATH", tmp_path / "default.db")
    monkeypatch.setattr(ledger_database_module, "DEFAULT_DB_PATH", tmp_path / "default.db")
    yield


@pytest.fixture(autouse=True)
def mock_ollama_globally(monkeypatch):
    """Install the shared Ollama client double for every test.

    Tests may override it with ``patch()`` or by assigning ``agent.client``.
    """
    from tests.shared.mock_ollama import setup_ollama_mocks

    setup_ollama_mocks(monkeypatch)


@pytest.fixture
def fast_settings() -> Settings:
    """Default settings with retry delays removed so failure paths run quickly."""
    return Settings(llm_retry_delay=0.01, llm_retry_backoff=1.0, llm_max_retries=2)


@pytest.fixture
def ledger_db(tmp_path: Path) -> Generator[LedgerDatabase]:
    """Empty ledger database in the temp directory."""
    yield LedgerDatabase(tmp_path / "ledger.db")


@pytest.fixture
def sample_work() -> Work:
    """A standalone work."""
    return Work(id="work-1", title="The Lighthouse Keepers")


@pytest.fixture
def sample_roster() -> CharacterRoster:
    """A two-character roster for work-1."""
    return CharacterRoster(
        work_id="work-1",
        characters=[
            RosterCharacter(
                name="Mara",
                role="protagonist",
                personality="guarded, dry humor",
                motivations="keep the light burning",
                speech_pattern="short sentences, nautical terms",
            ),
            RosterCharacter(
                name="Tobin",
                role="supporting",
                personality="earnest, talkative",
                motivations="win Mara's trust",
                speech_pattern="rambling, asks questions",
            ),
        ],
    )
