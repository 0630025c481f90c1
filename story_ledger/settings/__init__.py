"""Settings package for Story Ledger.

- _paths.py: Path constants for the settings file and database
- _types.py: Agent role and pricing definitions
- _validation.py: Settings validation
- _settings.py: Main Settings dataclass
"""

from story_ledger.settings._paths import DEFAULT_DB_PATH, OUTPUT_DIR, SETTINGS_FILE
from story_ledger.settings._settings import Settings
from story_ledger.settings._types import AGENT_ROLES, AgentRoleInfo, ModelPricing

__all__ = [
    "AGENT_ROLES",
    "DEFAULT_DB_PATH",
    "OUTPUT_DIR",
    "SETTINGS_FILE",
    "AgentRoleInfo",
    "ModelPricing",
    "Settings",
]
