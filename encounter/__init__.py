"""Turn-based encounter engine for LLM-driven roleplay."""

from .pipeline import EncounterController, Phase, TurnOutcome
from .state_store import EncounterArchive, SnapshotStore

__all__ = ["EncounterController", "Phase", "TurnOutcome", "SnapshotStore", "EncounterArchive"]
