"""Pydantic models for the character ledger.

These models define the structure for:
- Per-character subjective state recorded for each unit
- Callbacks (moments worth revisiting) and their lifecycle
- Voice reviews and the records persisted for them
- Works, rosters and the seed data carried into sequels

Models returned by the language model (LedgerExtraction, VoiceReview) are
validated at the boundary; anything that fails validation is treated as a
malformed response.
"""

import logging
from datetime import datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class CallbackStatus(StrEnum):
    """Lifecycle of a callback."""

    RIPE = "ripe"  # Still worth revisiting
    USED = "used"  # Already called back to
    EXPIRED = "expired"  # Window to land it has passed


class RelationshipDirection(StrEnum):
    """Which way a relationship moved during a unit."""

    STRENGTHENING = "strengthening"
    DETERIORATING = "deteriorating"
    COMPLICATED = "complicated"
    STABLE = "stable"


class RelationshipShift(BaseModel):
    """How one character's view of another changed in a unit."""

    direction: RelationshipDirection = RelationshipDirection.STABLE
    detail: str = ""
    unresolved: str | None = Field(
        default=None, description="Tension between the two that has not been addressed yet"
    )

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, value: Any) -> Any:
        """Accept case and whitespace variations of the direction name."""
        if isinstance(value, str):
            return value.strip().lower()
        return value


class CharacterState(BaseModel):
    """One character's subjective experience of a unit."""

    emotional_state: str = ""
    experience_from_pov: str = ""
    new_knowledge: list[str] = Field(default_factory=list)
    private_thoughts: str = ""
    relationship_shifts: dict[str, RelationshipShift] = Field(default_factory=dict)


class GroupDynamics(BaseModel):
    """Ensemble-level dynamics at the end of a unit."""

    overall_tension: str = ""
    power_balance: str = ""
    unspoken_things: list[str] = Field(default_factory=list)


class Callback(BaseModel):
    """A narratively significant moment worth revisiting later.

    Two callbacks are the same callback when they share
    ``(source_unit_index, moment)``; ``moment`` is compared verbatim.
    """

    model_config = ConfigDict(frozen=True)

    source_unit_index: int = Field(ge=0)
    moment: str = Field(min_length=1)
    status: CallbackStatus = CallbackStatus.RIPE
    context: str = ""

    @property
    def key(self) -> tuple[int, str]:
        """Deduplication key."""
        return (self.source_unit_index, self.moment)


class ExtractedCallback(BaseModel):
    """Callback as returned by the extractor; the source unit may be omitted."""

    source_unit_index: int | None = Field(default=None, ge=0)
    moment: str = Field(min_length=1)
    status: CallbackStatus = CallbackStatus.RIPE
    context: str = ""

    def to_callback(self, default_unit_index: int) -> Callback:
        """Resolve into a Callback, attributing it to ``default_unit_index`` if unsourced."""
        source = self.source_unit_index
        return Callback(
            source_unit_index=default_unit_index if source is None else source,
            moment=self.moment,
            status=self.status,
            context=self.context,
        )


class LedgerExtraction(BaseModel):
    """Structured output requested from the extraction model."""

    unit_title: str = ""
    character_states: dict[str, CharacterState]
    group_dynamics: GroupDynamics = Field(default_factory=GroupDynamics)
    callbacks: list[ExtractedCallback] = Field(default_factory=list)


class LedgerEntry(BaseModel):
    """The persisted ledger for one unit of one work.

    ``callback_bank`` is the merged and pruned snapshot as of this unit.
    ``compressed_summary`` is written once, the first time the entry ages
    out of the recency window, and reused from then on.
    """

    work_id: str
    unit_index: int = Field(ge=1)
    unit_title: str = ""
    character_states: dict[str, CharacterState] = Field(default_factory=dict)
    group_dynamics: GroupDynamics = Field(default_factory=GroupDynamics)
    callback_bank: list[Callback] = Field(default_factory=list)
    compressed_summary: str | None = None
    token_estimate: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.now)

    def ledger_payload(self) -> dict[str, Any]:
        """The character-state portion of the entry, as rendered into prompts."""
        return {
            "unit": self.unit_index,
            "unit_title": self.unit_title,
            "characters": {
                name: state.model_dump(mode="json")
                for name, state in self.character_states.items()
            },
            "group_dynamics": self.group_dynamics.model_dump(mode="json"),
        }


class VoiceFlag(BaseModel):
    """A single passage where a character sounded wrong."""

    type: str = Field(default="voice", description="e.g. voice, knowledge, emotional_continuity")
    location: str = ""
    issue: str
    suggestion: str = ""


class MissedCallback(BaseModel):
    """A ripe callback the unit had a natural opportunity to use but didn't."""

    callback: str
    opportunity: str = ""


class VoiceCheck(BaseModel):
    """Voice authenticity verdict for one character."""

    character: str = Field(min_length=1)
    authenticity_score: float = Field(ge=0.0, le=1.0)
    flags: list[VoiceFlag] = Field(default_factory=list)
    missed_callbacks: list[MissedCallback] = Field(default_factory=list)

    @field_validator("authenticity_score", mode="before")
    @classmethod
    def reject_non_numeric_score(cls, value: Any) -> Any:
        """Booleans are not scores, even though they coerce to numbers."""
        if isinstance(value, bool):
            raise ValueError("authenticity_score must be a number, got a boolean")
        return value


class VoiceReview(BaseModel):
    """Structured output requested from the review model."""

    voice_checks: list[VoiceCheck] = Field(default_factory=list)
    relationship_dynamics: str = ""
    overall_assessment: str = ""

    @model_validator(mode="before")
    @classmethod
    def wrap_single_object(cls, data: Any) -> Any:
        """Wrap a single VoiceCheck object in a review if needed."""
        if isinstance(data, dict) and "voice_checks" not in data:
            if "character" in data and "authenticity_score" in data:
                logger.debug("Wrapping single VoiceCheck object in VoiceReview")
                return {"voice_checks": [data]}
        return data

    @property
    def flags_count(self) -> int:
        """Total flags plus missed callbacks across all characters."""
        return sum(len(c.flags) + len(c.missed_callbacks) for c in self.voice_checks)

    @property
    def average_score(self) -> float | None:
        """Mean authenticity score, or None when no character was checked."""
        if not self.voice_checks:
            return None
        return sum(c.authenticity_score for c in self.voice_checks) / len(self.voice_checks)


class VoiceReviewRecord(BaseModel):
    """A persisted voice review for one unit."""

    work_id: str
    unit_index: int = Field(ge=1)
    review: VoiceReview
    flags_count: int = Field(default=0, ge=0)
    revision_applied: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def derive_flags_count(self) -> Self:
        """Keep flags_count in step with the review it summarizes."""
        self.flags_count = self.review.flags_count
        return self


class RosterCharacter(BaseModel):
    """Reference data for one character, supplied by the caller."""

    name: str = Field(min_length=1)
    role: str = "supporting"
    personality: str = ""
    motivations: str = ""
    speech_pattern: str = ""


class CharacterRoster(BaseModel):
    """The cast of a work. Read-only to this package."""

    work_id: str
    characters: list[RosterCharacter] = Field(default_factory=list)

    @property
    def names(self) -> list[str]:
        """Character names in roster order."""
        return [c.name for c in self.characters]


class Work(BaseModel):
    """A book or story, optionally part of a series."""

    id: str = Field(min_length=1)
    title: str = ""
    series_id: str | None = None
    sequence_number: int = Field(default=1, ge=1)
    parent_work_id: str | None = None

    @property
    def is_sequel(self) -> bool:
        """True when the work continues an earlier one."""
        return self.parent_work_id is not None


class UnitRecord(BaseModel):
    """Stored content of one unit."""

    work_id: str
    unit_index: int = Field(ge=1)
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def voice_revised(self) -> bool:
        """True when the content was rewritten by the reviser."""
        return bool(self.metadata.get("voice_revision"))


class PriorWorkState(BaseModel):
    """Final ledger state of one earlier work in a series."""

    work: Work
    final_entry: LedgerEntry
    open_callbacks: list[Callback] = Field(default_factory=list)


class SeedBlock(BaseModel):
    """Continuity carried from earlier works into the first unit of a sequel.

    Derived on demand and never persisted.
    """

    work_id: str
    prior_works: list[PriorWorkState] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when no earlier work contributed state."""
        return not self.prior_works


class ContinuityHealthMetrics(BaseModel):
    """Aggregate numbers describing how well continuity tracking is working."""

    works_tracked: int = 0
    ledger_entries: int = 0
    avg_token_estimate: float = 0.0
    reviews_total: int = 0
    revisions_applied: int = 0
    revision_rate: float = 0.0
    avg_authenticity: float | None = None
    review_pass_rate: float = 0.0
    callbacks_total: int = 0
    callbacks_used: int = 0
    callback_utilization: float = 0.0
