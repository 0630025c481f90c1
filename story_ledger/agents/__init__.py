"""Model-backed agents for extraction, compression, review and revision."""

from story_ledger.agents.base import BaseAgent
from story_ledger.agents.compressor import ContinuityCompressor
from story_ledger.agents.ledger_extractor import LedgerExtractor
from story_ledger.agents.reviser import SurgicalReviser
from story_ledger.agents.voice_reviewer import VoiceReviewer

__all__ = [
    "BaseAgent",
    "ContinuityCompressor",
    "LedgerExtractor",
    "SurgicalReviser",
    "VoiceReviewer",
]
