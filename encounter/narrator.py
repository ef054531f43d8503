from __future__ import annotations

import logging
from typing import List, Protocol

from .llm_interaction.adapter import TransportFailure
from .llm_interaction.prompt_builders import HostContext

logger = logging.getLogger(__name__)

NARRATOR_NAMES = {"narrator", "gm", "game master"}
DEFAULT_NARRATOR = "Narrator"


class TranscriptInjector(Protocol):
    """The host conversation the finished summary is posted into."""

    async def send_as(self, speaker: str, text: str) -> None: ...

    async def append_to_last_message(self, text: str) -> None: ...


def choose_narrator(context: HostContext) -> str:
    """Pick who posts the summary: a narrator/GM card, else the first active member, else the character."""
    if context.is_group:
        active = context.active_characters
        for card in active:
            if card.name.strip().lower() in NARRATOR_NAMES:
                return card.name
        if active:
            return active[0].name

    if context.character_name:
        return context.character_name
    return DEFAULT_NARRATOR


async def deliver_summary(injector: TranscriptInjector, speaker: str, text: str) -> str:
    """Post ``text`` as ``speaker``; fall back to appending onto the last message.

    Returns "sent" or "appended". Raises TransportFailure only when both paths fail.
    """
    try:
        await injector.send_as(speaker, text)
        return "sent"
    except Exception as exc:
        logger.warning("[SUMMARY] send as %s failed (%s), appending to last message", speaker, exc)

    try:
        await injector.append_to_last_message(text)
        return "appended"
    except Exception as exc:
        raise TransportFailure(f"Could not add the summary to the conversation: {exc}") from exc


class MemoryTranscript:
    """In-process transcript, used by the CLI and for tests."""

    def __init__(self) -> None:
        self.messages: List[dict] = []

    async def send_as(self, speaker: str, text: str) -> None:
        self.messages.append({"name": speaker, "mes": text})

    async def append_to_last_message(self, text: str) -> None:
        if not self.messages:
            raise LookupError("no message to append to")
        self.messages[-1]["mes"] += "\n\n" + text


__all__ = [
    "TranscriptInjector",
    "MemoryTranscript",
    "choose_narrator",
    "deliver_summary",
    "NARRATOR_NAMES",
    "DEFAULT_NARRATOR",
]
