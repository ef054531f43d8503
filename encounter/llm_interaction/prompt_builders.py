from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from encounter.config import EncounterSettings
from encounter.profiles import DEFAULT_COMBAT_PROFILE, EncounterProfile
from encounter.schemas import CombatStats, Entity, EncounterLogEntry

from .prompt_texts import (
    ACTION_INSTRUCTIONS_PROMPT,
    ACTION_SYSTEM_PROMPT,
    COMBAT_NARRATIVE_PROMPT,
    INIT_INSTRUCTIONS_PROMPT,
    INIT_SYSTEM_PROMPT,
    SUMMARY_INSTRUCTIONS_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    inject_profile_variables,
)


# -------------------------
# Host context
# -------------------------

@dataclass
class CharacterCard:
    name: str
    description: str = ""
    personality: str = ""
    muted: bool = False


@dataclass
class ChatLine:
    speaker: str
    text: str
    is_user: bool = False


@dataclass
class HostContext:
    """What the surrounding roleplay knows: who is present, what was said, tracked stats."""
    user_name: str = "User"
    persona: str = ""
    world_info: str = ""
    characters: List[CharacterCard] = field(default_factory=list)
    is_group: bool = False
    character_name: Optional[str] = None
    history: List[ChatLine] = field(default_factory=list)
    user_stats: str = ""
    skills: List[str] = field(default_factory=list)
    inventory: str = ""
    attributes: Dict[str, int] = field(default_factory=dict)
    present_characters: str = ""

    @property
    def active_characters(self) -> List[CharacterCard]:
        return [c for c in self.characters if c.name and not c.muted]

    @property
    def last_message(self) -> str:
        for line in reversed(self.history):
            if line.text.strip():
                return line.text
        return ""


# -------------------------
# Shared Prompt State
# -------------------------

@dataclass
class PromptState:
    """Everything a prompt builder reads, in one place.
    Builders are pure: the same PromptState always yields the same text."""
    context: HostContext
    settings: EncounterSettings
    profile: EncounterProfile = DEFAULT_COMBAT_PROFILE
    combat_stats: Optional[CombatStats] = None
    encounter_log: List[EncounterLogEntry] = field(default_factory=list)
    action: str = ""
    start_message: str = ""


# -------------------------
# Helpers
# -------------------------

def _fill(state: PromptState, override: str, default: str) -> str:
    return inject_profile_variables(
        override or default, state.profile.variables(), state.context.user_name
    )


def _setting_block(ctx: HostContext) -> str:
    world = ctx.world_info.strip() or "No world information available."
    return f"Here is some information for you about the setting:\n<setting>\n{world}\n</setting>"


def _characters_info(ctx: HostContext) -> str:
    active = ctx.active_characters
    if not active:
        return ""

    lines: List[str] = []
    if ctx.is_group:
        lines.append("Characters in this roleplay:")
        for index, card in enumerate(active, start=1):
            lines.append(f'<character{index}="{card.name}">')
            lines.extend(text for text in (card.description, card.personality) if text)
            lines.append(f"</character{index}>")
    else:
        card = active[0]
        lines.append("Character in this roleplay:\n")
        lines.append(f'<character="{card.name}">')
        lines.extend(text for text in (card.description, card.personality) if text)
        lines.append("</character>")
    return "\n".join(lines)


def _characters_block(ctx: HostContext, heading: str) -> Optional[str]:
    info = _characters_info(ctx)
    if not info:
        return None
    return f"{heading}\n<characters>\n{info}\n</characters>"


def _persona_block(ctx: HostContext, heading: str) -> str:
    persona = ctx.persona.strip() or "No persona information available."
    return f"{heading}\n<persona>\n{persona}\n</persona>"


def _chat_line(ctx: HostContext, line: ChatLine) -> Optional[str]:
    text = line.text.strip()
    if not text:
        return None
    speaker = ctx.user_name if line.is_user else (line.speaker or "Assistant")
    return f"{speaker}: {text}"


def _history_lines(ctx: HostContext, lines: List[ChatLine]) -> str:
    rendered = [_chat_line(ctx, line) for line in lines]
    return "\n\n".join(text for text in rendered if text)


def _attributes_line(attributes: Dict[str, int]) -> str:
    return ", ".join(f"{key.upper()} {value}" for key, value in attributes.items())


def _context_block(ctx: HostContext) -> str:
    parts: List[str] = []
    if ctx.user_stats.strip():
        parts.append(f"{ctx.user_name}'s Current Stats:\n{ctx.user_stats.strip()}")
    if ctx.skills:
        parts.append(f"{ctx.user_name}'s Skills: {', '.join(ctx.skills)}")
    if ctx.inventory.strip():
        parts.append(f"{ctx.user_name}'s Inventory:\n{ctx.inventory.strip()}")
    if ctx.attributes:
        parts.append(f"{ctx.user_name}'s Attributes: {_attributes_line(ctx.attributes)}")
    if ctx.present_characters.strip():
        parts.append(f"Present Characters (potential party members):\n{ctx.present_characters.strip()}")
    body = "\n\n".join(parts)
    return f"Here is some additional tracked context for the scene:\n<context>\n{body}\n</context>"


def _status_text(entity: Entity) -> str:
    labels = [f"{s.emoji} {s.name}".strip() for s in entity.statuses if s.emoji or s.name]
    return ", ".join(labels)


def _entity_details(entity: Entity) -> List[str]:
    lines = [f"  {bar.name}: {bar.current}/{bar.max}" for bar in entity.custom_bars]
    if entity.attacks:
        lines.append(f"  Attacks: {', '.join(a.name for a in entity.attacks)}")
    return lines


def _combat_state_block(stats: CombatStats) -> str:
    lines = ["Current Combat State:", f"Environment: {stats.environment or 'Unknown location'}", "", "Party Members:"]
    for member in stats.party:
        tag = " (Player)" if member.is_player else ""
        lines.append(f"- {member.name}{tag}: {member.hp}/{member.max_hp} HP")
        lines.extend(_entity_details(member))
        if member.items:
            lines.append(f"  Items: {', '.join(member.items)}")
        statuses = _status_text(member)
        if statuses:
            lines.append(f"  Status Effects: {statuses}")

    lines.extend(["", "Enemies:"])
    for enemy in stats.enemies:
        lines.append(f"- {enemy.name} ({enemy.sprite}): {enemy.hp}/{enemy.max_hp} HP")
        if enemy.description:
            lines.append(f"  {enemy.description}")
        lines.extend(_entity_details(enemy))
        statuses = _status_text(enemy)
        if statuses:
            lines.append(f"  Status Effects: {statuses}")
    return "\n".join(lines)


def _previous_actions_block(log: List[EncounterLogEntry]) -> Optional[str]:
    if not log:
        return None
    lines = ["Previous Combat Actions:"]
    for entry in log:
        lines.append(f"- {entry.action}")
        if entry.narrative:
            lines.append(f"  {entry.narrative}")
    return "\n".join(lines)


def _join(sections: List[Optional[str]]) -> str:
    return "\n\n".join(s for s in sections if s)


# -------------------------
# Prompt Builders
# -------------------------

def build_init_prompt(state: PromptState) -> str:
    ctx = state.context
    overrides = state.settings.prompts
    depth = state.settings.history_depth

    earlier = ctx.history[:-1][-depth:] if depth > 0 else []
    trigger = ctx.history[-1:] if ctx.history else []
    history = _history_lines(ctx, earlier + trigger)

    return _join([
        _fill(state, overrides.init_system, INIT_SYSTEM_PROMPT),
        _setting_block(ctx),
        _characters_block(
            ctx, "Here is the information available to you about the characters participating in the fight:"
        ),
        _persona_block(ctx, f"Here are details about the user's {ctx.user_name}:"),
        "Here is the chat history from before the encounter started between the user and the assistant:\n"
        f"<history>\n{history}\n</history>",
        _context_block(ctx),
        "The encounter starts now.",
        _fill(state, overrides.init_instructions, INIT_INSTRUCTIONS_PROMPT),
    ])


def build_action_prompt(state: PromptState) -> str:
    ctx = state.context
    overrides = state.settings.prompts
    depth = state.settings.history_depth
    stats = state.combat_stats or CombatStats()

    persona = ctx.persona.strip() or f"Name: {ctx.user_name}"
    if ctx.attributes:
        persona += f"\n\nAttributes: {_attributes_line(ctx.attributes)}"

    recent = ctx.history[-depth:] if depth > 0 else []
    narrative_line = f"For the narrative, write it with intent in {state.settings.combat_style.describe()}."
    guidance = _fill(state, overrides.combat_narrative, COMBAT_NARRATIVE_PROMPT)

    special = stats.special_instructions.strip()

    return _join([
        _fill(state, overrides.action_system, ACTION_SYSTEM_PROMPT),
        _setting_block(ctx),
        _characters_block(ctx, "Here is the information available to you about the characters:"),
        f"The protagonist is:\n<persona>\n{persona}\n</persona>",
        f"<history>\n{_history_lines(ctx, recent)}\n</history>",
        _previous_actions_block(state.encounter_log),
        _combat_state_block(stats),
        f"{ctx.user_name}'s Action: {state.action}",
        _fill(state, overrides.action_instructions, ACTION_INSTRUCTIONS_PROMPT)
        + f"\n{narrative_line}\n{guidance}",
        f"ADDITIONAL INSTRUCTIONS: {special}" if special else None,
    ])


def build_summary_prompt(state: PromptState, result: str) -> str:
    ctx = state.context
    overrides = state.settings.prompts

    rounds = [
        f"Round {index}:\n{entry.action}\n{entry.narrative}"
        for index, entry in enumerate(state.encounter_log, start=1)
    ]
    trigger = state.start_message.strip()

    return _join([
        _fill(state, overrides.summary_system, SUMMARY_SYSTEM_PROMPT),
        _setting_block(ctx),
        _characters_block(ctx, "Here is the information available to you about the characters:"),
        _persona_block(ctx, f"Here are details about {ctx.user_name}:"),
        f"Here is the last message before combat started:\n<trigger>\n{trigger}\n</trigger>" if trigger else None,
        f"Combat has ended with result: {state.profile.result_term(result)}",
        "Full Combat Log:\n\n" + "\n\n".join(rounds) if rounds else "Full Combat Log:\n(no rounds recorded)",
        _fill(state, overrides.summary_instructions, SUMMARY_INSTRUCTIONS_PROMPT)
        + f"\nWrite with intent in {state.settings.summary_style.describe()}.",
    ])


__all__ = [
    "CharacterCard",
    "ChatLine",
    "HostContext",
    "PromptState",
    "build_init_prompt",
    "build_action_prompt",
    "build_summary_prompt",
]
