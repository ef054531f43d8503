"""Pydantic models for the JSON the model sends back.

Every AI-mutable field on a patch is optional: ``None`` means the model did
not mention it and the local value must stay as it is.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StatusPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str = ""
    emoji: str = ""
    duration: Optional[Union[int, float, str]] = None


class CustomBarPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str = ""
    current: Union[int, float] = 0
    max: Union[int, float] = 0
    color: str = ""


class EntityPatch(BaseModel):
    """One party member or enemy as the model reports it."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    hp: Optional[int] = None
    max_hp: Optional[int] = Field(default=None, alias="maxHp")
    statuses: Optional[List[StatusPayload]] = None
    custom_bars: Optional[List[CustomBarPayload]] = Field(default=None, alias="customBars")

    @field_validator("hp", "max_hp", mode="before")
    @classmethod
    def _whole_numbers(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(round(value))
        return value

    @field_validator("statuses", mode="before")
    @classmethod
    def _status_strings(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"name": v} if isinstance(v, str) else v for v in value]
        return value

    def as_entity_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CombatStatsPatch(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    party: Optional[List[EntityPatch]] = None
    enemies: Optional[List[EntityPatch]] = None
    environment: Optional[str] = None
    special_instructions: Optional[str] = Field(default=None, alias="specialInstructions")


class EnemyAction(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    enemy_name: str = Field(default="", alias="enemyName")
    action: str = ""


class PartyAction(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    member_name: str = Field(default="", alias="memberName")
    action: str = ""


class ActionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    combat_stats: CombatStatsPatch = Field(alias="combatStats")
    enemy_actions: List[EnemyAction] = Field(default_factory=list, alias="enemyActions")
    party_actions: List[PartyAction] = Field(default_factory=list, alias="partyActions")
    narrative: str = ""
    combat_end: bool = Field(default=False, alias="combatEnd")
    result: Optional[str] = None

    @field_validator("enemy_actions", "party_actions", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("narrative", mode="before")
    @classmethod
    def _narrative_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list):
            return "\n".join(str(v) for v in value)
        return value

    @field_validator("combat_end", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class InitResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    party: List[Dict[str, Any]]
    enemies: List[Dict[str, Any]]
    environment: str = ""
    special_instructions: str = Field(default="", alias="specialInstructions")
    style_notes: Dict[str, Any] = Field(default_factory=dict, alias="styleNotes")

    @field_validator("environment", "special_instructions", mode="before")
    @classmethod
    def _none_is_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("style_notes", mode="before")
    @classmethod
    def _style_notes_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


__all__ = [
    "StatusPayload",
    "CustomBarPayload",
    "EntityPatch",
    "CombatStatsPatch",
    "EnemyAction",
    "PartyAction",
    "ActionResponse",
    "InitResponse",
]
