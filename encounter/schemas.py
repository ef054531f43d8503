from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union


ATTACK_TYPES = ("single-target", "AoE", "both")


class LogType(str, Enum):
    PLAYER_ACTION = "player-action"
    ENEMY_ACTION = "enemy-action"
    PARTY_ACTION = "party-action"
    NARRATIVE = "narrative"
    SYSTEM = "system"

    @classmethod
    def coerce(cls, value: Any) -> "LogType":
        try:
            return cls(value)
        except ValueError:
            return cls.SYSTEM


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Attack:
    name: str
    type: str = "single-target"

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type}

    @classmethod
    def from_json(cls, data: Any) -> "Attack":
        if isinstance(data, str):
            return cls(name=data)
        data = dict(data or {})
        attack_type = data.get("type") or "single-target"
        if attack_type not in ATTACK_TYPES:
            attack_type = "single-target"
        return cls(name=str(data.get("name") or ""), type=attack_type)


@dataclass
class StatusEffect:
    name: str = ""
    emoji: str = ""
    duration: Optional[Union[int, float, str]] = None

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "emoji": self.emoji}
        if self.duration is not None:
            payload["duration"] = self.duration
        return payload

    @classmethod
    def from_json(cls, data: Any) -> "StatusEffect":
        if isinstance(data, str):
            return cls(name=data)
        data = dict(data or {})
        return cls(
            name=str(data.get("name") or ""),
            emoji=str(data.get("emoji") or ""),
            duration=data.get("duration"),
        )


@dataclass
class CustomBar:
    name: str
    current: Union[int, float] = 0
    max: Union[int, float] = 0
    color: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "current": self.current, "max": self.max, "color": self.color}

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "CustomBar":
        return cls(
            name=str(data.get("name") or ""),
            current=data.get("current", 0) or 0,
            max=data.get("max", 0) or 0,
            color=str(data.get("color") or ""),
        )


# -------------------------
# Entities
# -------------------------

_ENTITY_KEYS = {"name", "hp", "maxHp", "attacks", "statuses", "customBars"}


@dataclass
class Entity:
    """Shared shape of a party member or an enemy.

    ``name`` and ``attacks`` are locally owned; ``hp``, ``max_hp``,
    ``statuses`` and ``custom_bars`` may be overwritten from a model response.
    Keys this class does not know about are kept in ``extra``.
    """

    name: str
    hp: int = 100
    max_hp: int = 100
    attacks: List[Attack] = field(default_factory=list)
    statuses: List[StatusEffect] = field(default_factory=list)
    custom_bars: List[CustomBar] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def defeated(self) -> bool:
        return self.hp <= 0

    def _base_json(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload.update(
            {
                "name": self.name,
                "hp": self.hp,
                "maxHp": self.max_hp,
                "attacks": [attack.to_json() for attack in self.attacks],
                "statuses": [status.to_json() for status in self.statuses],
                "customBars": [bar.to_json() for bar in self.custom_bars],
            }
        )
        return payload

    @staticmethod
    def _base_kwargs(data: Mapping[str, Any], own_keys: set[str]) -> Dict[str, Any]:
        max_hp = _as_int(data.get("maxHp"), 100)
        return {
            "name": str(data.get("name") or ""),
            "hp": _as_int(data.get("hp"), max_hp),
            "max_hp": max_hp,
            "attacks": [Attack.from_json(a) for a in data.get("attacks") or [] if a],
            "statuses": [StatusEffect.from_json(s) for s in data.get("statuses") or [] if s],
            "custom_bars": [
                CustomBar.from_json(b) for b in data.get("customBars") or [] if isinstance(b, Mapping)
            ],
            "extra": {k: v for k, v in data.items() if k not in _ENTITY_KEYS | own_keys},
        }


@dataclass
class Enemy(Entity):
    sprite: str = ""
    description: str = ""

    def to_json(self) -> Dict[str, Any]:
        payload = self._base_json()
        payload["sprite"] = self.sprite
        payload["description"] = self.description
        return payload

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Enemy":
        kwargs = cls._base_kwargs(data, {"sprite", "description"})
        return cls(
            sprite=str(data.get("sprite") or ""),
            description=str(data.get("description") or ""),
            **kwargs,
        )

    @classmethod
    def default(cls, **overrides: Any) -> "Enemy":
        data: Dict[str, Any] = {
            "name": "New Enemy",
            "hp": 100,
            "maxHp": 100,
            "attacks": [{"name": "Attack", "type": "single-target"}],
            "statuses": [],
            "customBars": [],
            "description": "",
            "sprite": "👹",
        }
        data.update(overrides)
        return cls.from_json(data)


@dataclass
class PartyMember(Entity):
    items: List[str] = field(default_factory=list)
    is_player: bool = False

    def to_json(self) -> Dict[str, Any]:
        payload = self._base_json()
        payload["items"] = list(self.items)
        payload["isPlayer"] = self.is_player
        return payload

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "PartyMember":
        kwargs = cls._base_kwargs(data, {"items", "isPlayer"})
        return cls(
            items=[str(item) for item in data.get("items") or []],
            is_player=bool(data.get("isPlayer", False)),
            **kwargs,
        )

    @classmethod
    def default(cls, **overrides: Any) -> "PartyMember":
        data: Dict[str, Any] = {
            "name": "New Ally",
            "hp": 100,
            "maxHp": 100,
            "attacks": [{"name": "Attack", "type": "single-target"}],
            "items": [],
            "statuses": [],
            "customBars": [],
            "isPlayer": False,
        }
        data.update(overrides)
        return cls.from_json(data)


# -------------------------
# Combat stats
# -------------------------

@dataclass
class CombatStats:
    party: List[PartyMember] = field(default_factory=list)
    enemies: List[Enemy] = field(default_factory=list)
    environment: str = ""
    special_instructions: str = ""
    style_notes: Dict[str, Any] = field(default_factory=dict)

    @property
    def player(self) -> Optional[PartyMember]:
        return next((member for member in self.party if member.is_player), None)

    def to_json(self) -> Dict[str, Any]:
        return {
            "party": [member.to_json() for member in self.party],
            "enemies": [enemy.to_json() for enemy in self.enemies],
            "environment": self.environment,
            "specialInstructions": self.special_instructions,
            "styleNotes": dict(self.style_notes),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "CombatStats":
        style_notes = data.get("styleNotes")
        return cls(
            party=[PartyMember.from_json(m) for m in data.get("party") or [] if isinstance(m, Mapping)],
            enemies=[Enemy.from_json(e) for e in data.get("enemies") or [] if isinstance(e, Mapping)],
            environment=str(data.get("environment") or ""),
            special_instructions=str(data.get("specialInstructions") or ""),
            style_notes=dict(style_notes) if isinstance(style_notes, Mapping) else {},
        )


# -------------------------
# Logs
# -------------------------

@dataclass
class LogEntry:
    message: str
    type: LogType = LogType.SYSTEM
    swipes: List[str] = field(default_factory=list)
    swipe_index: int = 0

    def __post_init__(self) -> None:
        if not self.swipes:
            self.swipes = [self.message]

    def to_json(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "type": self.type.value,
            "swipes": list(self.swipes),
            "swipeIndex": self.swipe_index,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "LogEntry":
        message = str(data.get("message") or "")
        swipes = [str(s) for s in data.get("swipes") or []] or [message]
        index = _as_int(data.get("swipeIndex"), 0)
        if not 0 <= index < len(swipes):
            index = len(swipes) - 1
        return cls(
            message=swipes[index],
            type=LogType.coerce(data.get("type")),
            swipes=swipes,
            swipe_index=index,
        )


@dataclass
class EncounterLogEntry:
    action: str
    narrative: str

    def to_json(self) -> Dict[str, Any]:
        return {"action": self.action, "narrative": self.narrative}

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "EncounterLogEntry":
        # older snapshots stored the narrative under "result"
        narrative = data.get("narrative", data.get("result"))
        return cls(action=str(data.get("action") or ""), narrative=str(narrative or ""))


# -------------------------
# Encounter aggregate
# -------------------------

@dataclass
class Encounter:
    active: bool = False
    initialized: bool = False
    combat_stats: Optional[CombatStats] = None
    display_log: List[LogEntry] = field(default_factory=list)
    encounter_log: List[EncounterLogEntry] = field(default_factory=list)
    pending_enemies: List[Enemy] = field(default_factory=list)
    pending_party: List[PartyMember] = field(default_factory=list)
    profile_id: Optional[str] = None
    start_message: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "initialized": self.initialized,
            "combatStats": self.combat_stats.to_json() if self.combat_stats else None,
            "displayLog": [entry.to_json() for entry in self.display_log],
            "encounterLog": [entry.to_json() for entry in self.encounter_log],
            "pendingEnemies": [enemy.to_json() for enemy in self.pending_enemies],
            "pendingParty": [member.to_json() for member in self.pending_party],
            "profileId": self.profile_id,
            "startMessage": self.start_message,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Encounter":
        stats = data.get("combatStats")
        return cls(
            active=bool(data.get("active", False)),
            initialized=bool(data.get("initialized", False)),
            combat_stats=CombatStats.from_json(stats) if isinstance(stats, Mapping) else None,
            display_log=[LogEntry.from_json(e) for e in data.get("displayLog") or []],
            encounter_log=[EncounterLogEntry.from_json(e) for e in data.get("encounterLog") or []],
            pending_enemies=[Enemy.from_json(e) for e in data.get("pendingEnemies") or []],
            pending_party=[PartyMember.from_json(m) for m in data.get("pendingParty") or []],
            profile_id=data.get("profileId"),
            start_message=str(data.get("startMessage") or ""),
        )


__all__ = [
    "ATTACK_TYPES",
    "LogType",
    "Attack",
    "StatusEffect",
    "CustomBar",
    "Entity",
    "Enemy",
    "PartyMember",
    "CombatStats",
    "LogEntry",
    "EncounterLogEntry",
    "Encounter",
]
