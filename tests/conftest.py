# tests/conftest.py
# ============================================================
# Shared pytest fixtures for all tests under tests/:
#   - FakeGenerator: scripted stand-in for the Ollama adapter
#   - store / archive: snapshot + history files under tmp_path
#   - controller: an EncounterController wired to all of the above
# ============================================================

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, List, Tuple, Union

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from encounter.config import EncounterSettings
from encounter.llm_interaction.prompt_builders import CharacterCard, ChatLine, HostContext
from encounter.narrator import MemoryTranscript
from encounter.pipeline import EncounterController
from encounter.profiles import ProfileRegistry
from encounter.state_store import EncounterArchive, SnapshotStore


INIT_RESPONSE = {
    "party": [
        {
            "name": "Hero",
            "hp": 100,
            "maxHp": 100,
            "isPlayer": True,
            "attacks": [{"name": "Slash", "type": "single-target"}],
            "items": ["Potion"],
        }
    ],
    "enemies": [
        {"name": "Goblin", "hp": 30, "maxHp": 30, "sprite": "👺", "attacks": ["Stab"]},
    ],
    "environment": "A muddy forest clearing",
}

TWO_ENEMY_INIT = {
    "party": [{"name": "Hero", "hp": 100, "maxHp": 100, "isPlayer": True}],
    "enemies": [
        {"name": "Goblin", "hp": 30, "maxHp": 30, "sprite": "👺"},
        {"name": "Orc", "hp": 60, "maxHp": 60, "sprite": "👹"},
    ],
    "environment": "A ruined watchtower",
}


class FakeGenerator:
    """Returns scripted replies in order; an Exception in the script is raised instead."""

    def __init__(self, *replies: Union[str, dict, Exception]) -> None:
        self.replies: List[Union[str, dict, Exception]] = list(replies)
        self.calls: List[Tuple[str, str]] = []

    def queue(self, *replies: Union[str, dict, Exception]) -> None:
        self.replies.extend(replies)

    async def generate(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        if not self.replies:
            raise AssertionError(f"unexpected {stage} request")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply

    @property
    def stages(self) -> List[str]:
        return [stage for stage, _ in self.calls]


class BrokenSendTranscript(MemoryTranscript):
    """send_as always fails, so delivery has to fall back to appending."""

    async def send_as(self, speaker: str, text: str) -> None:
        raise RuntimeError("send command unavailable")


def make_context(**overrides: Any) -> HostContext:
    values = dict(
        user_name="Hero",
        persona="A wandering swordsman.",
        world_info="The kingdom of Vell.",
        characters=[CharacterCard(name="Mira", description="A healer.")],
        character_name="Mira",
        history=[
            ChatLine(speaker="Mira", text="Something moves in the trees."),
            ChatLine(speaker="Hero", text="A goblin leaps out of the bushes!", is_user=True),
        ],
    )
    values.update(overrides)
    return HostContext(**values)


@pytest.fixture
def context() -> HostContext:
    return make_context()


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "state")


@pytest.fixture
def archive(tmp_path: Path) -> EncounterArchive:
    return EncounterArchive(tmp_path / "state")


@pytest.fixture
def transcript() -> MemoryTranscript:
    t = MemoryTranscript()
    t.messages.append({"name": "Hero", "mes": "A goblin leaps out of the bushes!"})
    return t


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def controller(generator, store, transcript, archive, context) -> EncounterController:
    return EncounterController(
        "chat-1",
        generator,
        store,
        transcript,
        profiles=ProfileRegistry(),
        settings=EncounterSettings(),
        context_provider=lambda: context,
        archive=archive,
    )
