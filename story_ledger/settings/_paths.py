"""Path constants for Story Ledger settings and output files."""

from pathlib import Path

SETTINGS_FILE = Path(__file__).parent.parent / "settings.json"

# Go up from story_ledger/settings to the project root, then into output/
OUTPUT_DIR = Path(__file__).parent.parent.parent / "output"
DEFAULT_DB_PATH = OUTPUT_DIR / "story_ledger.db"

__all__ = ["DEFAULT_DB_PATH", "OUTPUT_DIR", "SETTINGS_FILE"]
