from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .llm_interaction.responses import EnemyAction, PartyAction
from .schemas import Encounter, EncounterLogEntry, LogEntry, LogType

logger = logging.getLogger(__name__)

ACTION_RESOLVED = "Action resolved"


class LogManager:
    """
    Owns the two logs of an encounter.

    display_log: one entry per rendered line, each with swipeable alternates.
    encounter_log: one entry per round, what the summary prompt reads.
    """

    def __init__(self, encounter: Encounter) -> None:
        self.encounter = encounter

    @property
    def entries(self) -> List[LogEntry]:
        return self.encounter.display_log

    # -------------------------------------------------

    def append_entry(self, message: str, type: LogType = LogType.SYSTEM) -> LogEntry:
        entry = LogEntry(message=message, type=LogType.coerce(type))
        self.entries.append(entry)
        return entry

    def add_swipe(self, index: int, message: str) -> LogEntry:
        entry = self._entry(index)
        entry.swipes.append(message)
        entry.swipe_index = len(entry.swipes) - 1
        entry.message = message
        self._sync_round_narrative(index)
        return entry

    def set_swipe_index(self, index: int, new_index: int) -> LogEntry:
        entry = self._entry(index)
        if not 0 <= new_index < len(entry.swipes):
            raise IndexError(f"swipe {new_index} out of range for entry {index}")
        entry.swipe_index = new_index
        entry.message = entry.swipes[new_index]
        self._sync_round_narrative(index)
        return entry

    def swipe(self, index: int, direction: int) -> bool:
        entry = self._entry(index)
        target = entry.swipe_index + (1 if direction > 0 else -1)
        if not 0 <= target < len(entry.swipes):
            return False
        self.set_swipe_index(index, target)
        return True

    # -------------------------------------------------

    def append_round(
        self,
        action: str,
        enemy_actions: Sequence[EnemyAction] = (),
        party_actions: Sequence[PartyAction] = (),
        narrative: str = "",
    ) -> EncounterLogEntry:
        self.append_entry(f"You: {action}", LogType.PLAYER_ACTION)
        for enemy_action in enemy_actions:
            self.append_entry(f"{enemy_action.enemy_name}: {enemy_action.action}", LogType.ENEMY_ACTION)
        for party_action in party_actions:
            self.append_entry(f"{party_action.member_name}: {party_action.action}", LogType.PARTY_ACTION)
        for line in narrative.split("\n"):
            if line.strip():
                self.append_entry(line, LogType.NARRATIVE)

        lines = [" ".join(action.splitlines())]
        lines.extend(f"{a.enemy_name}: {a.action}" for a in enemy_actions)
        lines.extend(f"{a.member_name}: {a.action}" for a in party_actions)
        round_entry = EncounterLogEntry(action="\n".join(lines), narrative=narrative or ACTION_RESOLVED)
        self.encounter.encounter_log.append(round_entry)
        return round_entry

    def round_of(self, index: int) -> Optional[int]:
        """Encounter-log round that display entry ``index`` belongs to, or None before the first action."""
        self._entry(index)
        count = sum(1 for entry in self.entries[: index + 1] if entry.type is LogType.PLAYER_ACTION)
        return count - 1 if count else None

    def round_action(self, index: int) -> Optional[str]:
        """The player's action as stored in the encounter log for the round containing ``index``."""
        round_index = self.round_of(index)
        if round_index is None or round_index >= len(self.encounter.encounter_log):
            return None
        return self.encounter.encounter_log[round_index].action.split("\n", 1)[0]

    async def regenerate(self, index: int, resolve: Callable[[str], Awaitable[str]]) -> LogEntry:
        """Ask for an alternate version of a narrative line.

        ``resolve`` receives the round's action and returns the new narrative
        text; any LLMError it raises propagates and leaves the entry untouched.
        The new text stands for the whole round, so it also becomes the
        round's encounter-log narrative.
        """
        entry = self._entry(index)
        if entry.type is not LogType.NARRATIVE:
            raise ValueError(f"entry {index} is {entry.type.value}, only narrative entries regenerate")
        action = self.round_action(index)
        if action is None:
            raise ValueError(f"entry {index} is not part of any round")

        text = await resolve(action)
        lines = [line for line in text.split("\n") if line.strip()]
        return self.add_swipe(index, "\n".join(lines) or text.strip())

    # -------------------------------------------------

    def _entry(self, index: int) -> LogEntry:
        if not 0 <= index < len(self.entries):
            raise IndexError(f"log entry {index} out of range")
        return self.entries[index]

    def _sync_round_narrative(self, index: int) -> None:
        if self.entries[index].type is not LogType.NARRATIVE:
            return
        round_index = self.round_of(index)
        if round_index is None or round_index >= len(self.encounter.encounter_log):
            return

        start = index
        while start > 0 and self.entries[start - 1].type is not LogType.PLAYER_ACTION:
            start -= 1
        end = index
        while end + 1 < len(self.entries) and self.entries[end + 1].type is not LogType.PLAYER_ACTION:
            end += 1

        narrative_entries = [e for e in self.entries[start:end + 1] if e.type is LogType.NARRATIVE]
        # an alternate on a narrative line replaces the round's narrative as a whole
        alternates = [e for e in narrative_entries if e.swipe_index > 0]
        if self.entries[index].swipe_index > 0:
            narrative = self.entries[index].message
        elif alternates:
            narrative = alternates[0].message
        else:
            narrative = "\n".join(e.message for e in narrative_entries)
        self.encounter.encounter_log[round_index].narrative = narrative or ACTION_RESOLVED
        logger.debug("[LOG] round %s narrative resynced from entry %s", round_index, index)


__all__ = ["LogManager", "ACTION_RESOLVED"]
