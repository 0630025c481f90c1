"""Type definitions and constants for Story Ledger settings."""

from typing import TypedDict


class AgentRoleInfo(TypedDict):
    """Type definition for agent role information."""

    name: str
    description: str


class ModelPricing(TypedDict):
    """USD price per million tokens for one agent role."""

    input_per_million: float
    output_per_million: float


AGENT_ROLES: dict[str, AgentRoleInfo] = {
    "extractor": {
        "name": "Ledger Extractor",
        "description": "Records each character's subjective experience of a unit",
    },
    "compressor": {
        "name": "Continuity Compressor",
        "description": "Shrinks aged ledger entries into short summaries",
    },
    "reviewer": {
        "name": "Voice Reviewer",
        "description": "Scores new units for character voice authenticity",
    },
    "reviser": {
        "name": "Surgical Reviser",
        "description": "Applies targeted voice fixes to flagged units",
    },
}

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
