"""Builders for ledger objects used across tests."""

from story_ledger.memory.ledger_models import (
    Callback,
    CallbackStatus,
    CharacterState,
    GroupDynamics,
    LedgerEntry,
    RelationshipShift,
)


def make_entry(
    unit_index: int,
    work_id: str = "work-1",
    callbacks: list[Callback] | None = None,
    private_thoughts: str = "",
    compressed_summary: str | None = None,
) -> LedgerEntry:
    """Build a ledger entry with two characters and optional padding."""
    return LedgerEntry(
        work_id=work_id,
        unit_index=unit_index,
        unit_title=f"Unit {unit_index}",
        character_states={
            "Mara": CharacterState(
                emotional_state="wary",
                experience_from_pov=f"Kept watch during unit {unit_index}",
                new_knowledge=[f"fact {unit_index}"],
                private_thoughts=private_thoughts or "Tobin talks too much",
                relationship_shifts={
                    "Tobin": RelationshipShift(
                        direction="complicated",
                        detail="shared a storm",
                        unresolved="the broken lamp",
                    )
                },
            ),
            "Tobin": CharacterState(emotional_state="hopeful"),
        },
        group_dynamics=GroupDynamics(overall_tension="rising"),
        callback_bank=callbacks or [],
        compressed_summary=compressed_summary,
    )


def make_callback(
    source: int, moment: str, status: CallbackStatus = CallbackStatus.RIPE
) -> Callback:
    """Build a callback."""
    return Callback(source_unit_index=source, moment=moment, status=status)
