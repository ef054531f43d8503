from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_MODEL = "gpt-oss:20b"
DEFAULT_STATE_ROOT = "state"
DEFAULT_HISTORY_DEPTH = 8

TENSES = ("present", "past")
PERSONS = ("first", "second", "third")
NARRATIONS = ("omniscient", "limited")


@dataclass(frozen=True)
class NarrativeStyle:
    tense: str = "present"
    person: str = "third"
    narration: str = "omniscient"
    pov: str = "narrator"

    def describe(self) -> str:
        return (
            f"{self.tense} tense {self.person}-person {self.narration} "
            f"from {self.pov}'s point of view"
        )

    def to_json(self) -> Dict[str, str]:
        return {"tense": self.tense, "person": self.person, "narration": self.narration, "pov": self.pov}

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]], *, default: "NarrativeStyle") -> "NarrativeStyle":
        data = data or {}
        return cls(
            tense=str(data.get("tense") or default.tense),
            person=str(data.get("person") or default.person),
            narration=str(data.get("narration") or default.narration),
            pov=str(data.get("pov") or default.pov),
        )


COMBAT_STYLE = NarrativeStyle()
SUMMARY_STYLE = NarrativeStyle(tense="past")


@dataclass
class PromptOverrides:
    """User-supplied replacements for the default prompt templates. Blank means default."""

    init_system: str = ""
    init_instructions: str = ""
    action_system: str = ""
    action_instructions: str = ""
    summary_system: str = ""
    summary_instructions: str = ""
    combat_narrative: str = ""


@dataclass
class EncounterSettings:
    model: str = DEFAULT_MODEL
    ollama_host: Optional[str] = None
    state_root: Path = Path(DEFAULT_STATE_ROOT)
    history_depth: int = DEFAULT_HISTORY_DEPTH
    combat_style: NarrativeStyle = COMBAT_STYLE
    summary_style: NarrativeStyle = SUMMARY_STYLE
    prompts: PromptOverrides = field(default_factory=PromptOverrides)
    default_options: Dict[str, Any] = field(default_factory=lambda: {"temperature": 0.7})
    stage_options: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: {
            "init": {"temperature": 0.4},
            "action": {"temperature": 0.7},
            "summary": {"temperature": 0.9},
        }
    )

    @classmethod
    def from_env(cls, **overrides: Any) -> "EncounterSettings":
        """Settings from ENCOUNTER_* / OLLAMA_HOST; keyword overrides (CLI flags) win."""
        depth = os.getenv("ENCOUNTER_HISTORY_DEPTH", "")
        settings = cls(
            model=os.getenv("ENCOUNTER_MODEL", DEFAULT_MODEL),
            ollama_host=os.getenv("OLLAMA_HOST") or None,
            state_root=Path(os.getenv("ENCOUNTER_STATE_ROOT", DEFAULT_STATE_ROOT)),
            history_depth=int(depth) if depth.strip().isdigit() else DEFAULT_HISTORY_DEPTH,
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if "state_root" in overrides:
            overrides["state_root"] = Path(overrides["state_root"])
        return replace(settings, **overrides)


__all__ = [
    "DEFAULT_MODEL",
    "DEFAULT_HISTORY_DEPTH",
    "NarrativeStyle",
    "COMBAT_STYLE",
    "SUMMARY_STYLE",
    "PromptOverrides",
    "EncounterSettings",
]
