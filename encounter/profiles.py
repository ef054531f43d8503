"""
Encounter profiles.

A profile reframes the same combat engine for another kind of encounter:
what HP stands for, what attacks are, how the summary is framed, and
the labels a front end shows. Presets are built in and read-only; custom
profiles are sanitized and validated before they are stored or used.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from encounter.state_store import atomic_write_json, read_json

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "default-combat"

MAX_FIELD_LENGTH = 200

VALID_STAKES = ("low", "medium", "high")

FORBIDDEN_KEYWORDS = (
    "return only", "output only", "ignore previous", "disregard",
    "instead of", "however", "but actually", "forget", "override",
    "system:", "assistant:", "user:", "<|", "|>", "json", "{", "}", "[", "]",
)

# attribute name -> serialized key
_FIELD_KEYS = {
    "encounter_type": "ENCOUNTER_TYPE",
    "encounter_goal": "ENCOUNTER_GOAL",
    "encounter_stakes": "ENCOUNTER_STAKES",
    "resource_interpretation": "RESOURCE_INTERPRETATION",
    "action_interpretation": "ACTION_INTERPRETATION",
    "status_interpretation": "STATUS_INTERPRETATION",
    "summary_framing": "SUMMARY_FRAMING",
    "enemy_label_singular": "ENEMY_LABEL_SINGULAR",
    "enemy_label_plural": "ENEMY_LABEL_PLURAL",
    "party_label_singular": "PARTY_LABEL_SINGULAR",
    "party_label_plural": "PARTY_LABEL_PLURAL",
    "resource_label": "RESOURCE_LABEL",
    "action_section_label": "ACTION_SECTION_LABEL",
    "victory_term": "VICTORY_TERM",
    "defeat_term": "DEFEAT_TERM",
    "fled_term": "FLED_TERM",
}

REQUIRED_FIELDS = tuple(_FIELD_KEYS)

# the subset substituted into prompt templates
PROMPT_VARIABLES = REQUIRED_FIELDS[:7]
PROMPT_VARIABLES_KEYS = tuple(_FIELD_KEYS[name] for name in PROMPT_VARIABLES)


class ProfileError(ValueError):
    """A custom profile failed validation."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__(", ".join(errors) or "Invalid profile")
        self.errors = errors


@dataclass(frozen=True)
class EncounterProfile:
    id: str
    name: str
    encounter_type: str = ""
    encounter_goal: str = ""
    encounter_stakes: str = ""
    resource_interpretation: str = ""
    action_interpretation: str = ""
    status_interpretation: str = ""
    summary_framing: str = ""
    enemy_label_singular: str = ""
    enemy_label_plural: str = ""
    party_label_singular: str = ""
    party_label_plural: str = ""
    resource_label: str = ""
    action_section_label: str = ""
    victory_term: str = ""
    defeat_term: str = ""
    fled_term: str = ""
    is_preset: bool = False
    description: str = ""

    def variables(self) -> Dict[str, str]:
        return {_FIELD_KEYS[name]: getattr(self, name) for name in PROMPT_VARIABLES}

    def result_term(self, result: str) -> str:
        return {
            "victory": self.victory_term,
            "defeat": self.defeat_term,
            "fled": self.fled_term,
        }.get(result, result)

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "name": self.name}
        for attr, key in _FIELD_KEYS.items():
            payload[key] = getattr(self, attr)
        payload["isPreset"] = self.is_preset
        payload["description"] = self.description
        return payload

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "EncounterProfile":
        kwargs: Dict[str, Any] = {
            attr: data[key] for attr, key in _FIELD_KEYS.items() if key in data
        }
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            is_preset=bool(data.get("isPreset", False)),
            description=str(data.get("description") or ""),
            **kwargs,
        )


DEFAULT_COMBAT_PROFILE = EncounterProfile(
    id=DEFAULT_PROFILE_ID,
    name="Combat",
    encounter_type="Combat",
    encounter_goal="defeat opposing forces",
    encounter_stakes="medium",
    resource_interpretation="physical health and endurance",
    action_interpretation="attacks, skills, and combat maneuvers",
    status_interpretation="physical or magical conditions",
    summary_framing="a complete battle recap",
    enemy_label_singular="Enemy",
    enemy_label_plural="Enemies",
    party_label_singular="Ally",
    party_label_plural="Party",
    resource_label="HP",
    action_section_label="Attacks",
    victory_term="Victory",
    defeat_term="Defeat",
    fled_term="Fled",
    is_preset=True,
    description="Traditional combat encounter with HP representing physical health",
)

PRESET_PROFILES: Tuple[EncounterProfile, ...] = (
    DEFAULT_COMBAT_PROFILE,
    EncounterProfile(
        id="preset-social",
        name="Social Confrontation",
        encounter_type="Social",
        encounter_goal="persuade or manipulate the opposition",
        encounter_stakes="high",
        resource_interpretation="composure, leverage, and social standing",
        action_interpretation="arguments, appeals, and social maneuvers",
        status_interpretation="emotional states and social conditions",
        summary_framing="a diplomatic exchange recap",
        enemy_label_singular="Opponent",
        enemy_label_plural="Opposition",
        party_label_singular="Ally",
        party_label_plural="Allies",
        resource_label="Composure",
        action_section_label="Arguments",
        victory_term="Persuaded",
        defeat_term="Discredited",
        fled_term="Withdrew",
        is_preset=True,
        description="Social encounter where HP represents composure and attacks are rhetorical arguments",
    ),
    EncounterProfile(
        id="preset-stealth",
        name="Stealth Infiltration",
        encounter_type="Stealth",
        encounter_goal="reach the objective undetected",
        encounter_stakes="high",
        resource_interpretation="alertness level of guards and exposure margin",
        action_interpretation="distraction attempts, stealth maneuvers, and evasion tactics",
        status_interpretation="detection states and environmental conditions",
        summary_framing="an infiltration attempt recap",
        enemy_label_singular="Guard",
        enemy_label_plural="Guards",
        party_label_singular="Agent",
        party_label_plural="Team",
        resource_label="Cover",
        action_section_label="Maneuvers",
        victory_term="Infiltrated",
        defeat_term="Exposed",
        fled_term="Aborted",
        is_preset=True,
        description="Stealth encounter where HP represents alertness and attacks are distractions",
    ),
    EncounterProfile(
        id="preset-investigation",
        name="Investigation",
        encounter_type="Investigation",
        encounter_goal="solve the mystery before time runs out",
        encounter_stakes="medium",
        resource_interpretation="remaining leads, time pressure, and certainty level",
        action_interpretation="deduction attempts, evidence gathering, and interrogation",
        status_interpretation="mental states and investigative progress",
        summary_framing="a detective work recap",
        enemy_label_singular="Red Herring",
        enemy_label_plural="Obstacles",
        party_label_singular="Investigator",
        party_label_plural="Team",
        resource_label="Leads",
        action_section_label="Deductions",
        victory_term="Solved",
        defeat_term="Stumped",
        fled_term="Gave Up",
        is_preset=True,
        description="Investigation encounter where HP represents remaining leads and attacks are deductions",
    ),
    EncounterProfile(
        id="preset-chase",
        name="Chase Sequence",
        encounter_type="Chase",
        encounter_goal="escape pursuers or catch the target",
        encounter_stakes="high",
        resource_interpretation="distance advantage and stamina remaining",
        action_interpretation="sprint bursts, obstacles thrown, and evasive maneuvers",
        status_interpretation="physical conditions and tactical advantages",
        summary_framing="a pursuit sequence recap",
        enemy_label_singular="Pursuer",
        enemy_label_plural="Pursuers",
        party_label_singular="Runner",
        party_label_plural="Team",
        resource_label="Stamina",
        action_section_label="Maneuvers",
        victory_term="Escaped",
        defeat_term="Caught",
        fled_term="Surrendered",
        is_preset=True,
        description="Chase encounter where HP represents distance/stamina and attacks are evasive actions",
    ),
    EncounterProfile(
        id="preset-negotiation",
        name="Negotiation",
        encounter_type="Negotiation",
        encounter_goal="reach a favorable agreement",
        encounter_stakes="medium",
        resource_interpretation="bargaining power and credibility",
        action_interpretation="offers, concessions, and leverage plays",
        status_interpretation="negotiation positions and emotional states",
        summary_framing="a deal-making session recap",
        enemy_label_singular="Negotiator",
        enemy_label_plural="Opposition",
        party_label_singular="Negotiator",
        party_label_plural="Team",
        resource_label="Leverage",
        action_section_label="Offers",
        victory_term="Deal Reached",
        defeat_term="Deal Failed",
        fled_term="Walked Away",
        is_preset=True,
        description="Negotiation encounter where HP represents bargaining power and attacks are offers",
    ),
    EncounterProfile(
        id="preset-survival",
        name="Survival Ordeal",
        encounter_type="Survival",
        encounter_goal="endure until rescue or escape",
        encounter_stakes="high",
        resource_interpretation="supplies, morale, and physical condition",
        action_interpretation="resource management, shelter building, and foraging",
        status_interpretation="environmental hazards and survival conditions",
        summary_framing="a survival ordeal recap",
        enemy_label_singular="Hazard",
        enemy_label_plural="Hazards",
        party_label_singular="Survivor",
        party_label_plural="Group",
        resource_label="Supplies",
        action_section_label="Actions",
        victory_term="Survived",
        defeat_term="Perished",
        fled_term="Abandoned",
        is_preset=True,
        description="Survival encounter where HP represents supplies/morale and attacks are survival actions",
    ),
)

_PRESETS_BY_ID = {profile.id: profile for profile in PRESET_PROFILES}


# -------------------------
# Sanitizing / validation
# -------------------------

_JSON_CHARS = re.compile(r'[{}\[\]":]')
_FORBIDDEN_PATTERNS = [re.compile(re.escape(k), re.IGNORECASE) for k in FORBIDDEN_KEYWORDS]


def sanitize_profile_value(value: Any) -> str:
    if not isinstance(value, str):
        return ""

    value = _JSON_CHARS.sub("", value)
    for pattern in _FORBIDDEN_PATTERNS:
        value = pattern.sub("", value)

    value = re.sub(r"\s+", " ", value.replace("\n", " "))
    return value[:MAX_FIELD_LENGTH].strip()


def sanitize_profile(profile: EncounterProfile) -> EncounterProfile:
    changes: Dict[str, Any] = {}
    for name in REQUIRED_FIELDS:
        value = getattr(profile, name)
        if value:
            changes[name] = sanitize_profile_value(value)
    if profile.name:
        changes["name"] = sanitize_profile_value(profile.name)
    if profile.description:
        changes["description"] = sanitize_profile_value(profile.description)
    if changes.get("encounter_stakes"):
        changes["encounter_stakes"] = changes["encounter_stakes"].lower()
    return replace(profile, **changes)


def validate_profile(profile: Any) -> List[str]:
    """Return the list of problems; an empty list means the profile is usable."""
    if not isinstance(profile, EncounterProfile):
        return ["Profile must be an object"]

    errors: List[str] = []
    for name in REQUIRED_FIELDS:
        key = _FIELD_KEYS[name]
        value = getattr(profile, name)
        if not value:
            errors.append(f"Missing required field: {key}")
        elif not isinstance(value, str):
            errors.append(f"Field {key} must be a string")
        elif not value.strip():
            errors.append(f"Field {key} cannot be empty")

    stakes = profile.encounter_stakes
    if isinstance(stakes, str) and stakes and stakes.lower() not in VALID_STAKES:
        errors.append('ENCOUNTER_STAKES must be "low", "medium", or "high"')

    for name in REQUIRED_FIELDS:
        value = getattr(profile, name)
        if isinstance(value, str) and value:
            lowered = value.lower()
            if any(keyword in lowered for keyword in FORBIDDEN_KEYWORDS):
                errors.append(f"Field {_FIELD_KEYS[name]} contains forbidden keywords")
            if len(value) > MAX_FIELD_LENGTH:
                errors.append(
                    f"Field {_FIELD_KEYS[name]} exceeds maximum length of {MAX_FIELD_LENGTH} characters"
                )

    return errors


def _new_profile_id() -> str:
    return f"custom-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


# -------------------------
# Registry
# -------------------------

class ProfileRegistry:
    """
    Presets plus user-defined profiles.

    Custom profiles are kept in memory and, when a ``path`` is given,
    mirrored to a JSON file with the same atomic write the snapshot store uses.
    """

    def __init__(self, path: Optional[Path] = None, active_profile_id: Optional[str] = None) -> None:
        self.path = Path(path) if path else None
        self.active_profile_id = active_profile_id
        self.encounter_profile_id: Optional[str] = None
        self.custom: List[EncounterProfile] = []
        if self.path is not None:
            self._load()

    # -------------------------------------------------

    def get_profile(self, profile_id: Optional[str]) -> Optional[EncounterProfile]:
        if not profile_id:
            return None
        if profile_id in _PRESETS_BY_ID:
            return _PRESETS_BY_ID[profile_id]
        return next((p for p in self.custom if p.id == profile_id), None)

    def all_profiles(self) -> List[EncounterProfile]:
        merged: Dict[str, EncounterProfile] = {p.id: p for p in PRESET_PROFILES}
        for profile in self.custom:
            merged[profile.id] = profile
        return list(merged.values())

    def get_active_profile(self) -> EncounterProfile:
        profile_id = self.encounter_profile_id or self.active_profile_id
        if not profile_id:
            return DEFAULT_COMBAT_PROFILE

        if profile_id in _PRESETS_BY_ID:
            return _PRESETS_BY_ID[profile_id]

        custom = self.get_profile(profile_id)
        if custom is None:
            logger.warning("[PROFILE] %s not found, using default", profile_id)
            return DEFAULT_COMBAT_PROFILE

        sanitized = sanitize_profile(custom)
        errors = validate_profile(sanitized)
        if errors:
            logger.warning("[PROFILE] %s is invalid (%s), using default", profile_id, "; ".join(errors))
            return DEFAULT_COMBAT_PROFILE
        return sanitized

    def set_active_profile(self, profile_id: str) -> bool:
        if self.get_profile(profile_id) is None:
            return False
        self.active_profile_id = profile_id
        self._persist()
        return True

    def set_encounter_profile(self, profile_id: Optional[str]) -> bool:
        if profile_id is not None and self.get_profile(profile_id) is None:
            return False
        self.encounter_profile_id = profile_id
        return True

    # -------------------------------------------------

    def save_profile(self, profile: EncounterProfile) -> EncounterProfile:
        sanitized = sanitize_profile(profile)
        errors = validate_profile(sanitized)
        if errors:
            raise ProfileError(errors)

        sanitized = replace(sanitized, id=sanitized.id or _new_profile_id(), is_preset=False)
        for index, existing in enumerate(self.custom):
            if existing.id == sanitized.id:
                self.custom[index] = sanitized
                break
        else:
            self.custom.append(sanitized)

        self._persist()
        return sanitized

    def create_profile(self, **values: Any) -> EncounterProfile:
        values.pop("id", None)
        values.pop("is_preset", None)
        return self.save_profile(EncounterProfile(id=_new_profile_id(), **values))

    def update_profile(self, profile_id: str, **values: Any) -> EncounterProfile:
        if profile_id in _PRESETS_BY_ID:
            raise ProfileError([f"Preset profile {profile_id} cannot be modified"])
        current = self.get_profile(profile_id)
        if current is None:
            raise ProfileError([f"Profile not found: {profile_id}"])
        values.pop("id", None)
        values.pop("is_preset", None)
        return self.save_profile(replace(current, **values))

    def delete_profile(self, profile_id: str) -> bool:
        if profile_id in _PRESETS_BY_ID:
            return False
        before = len(self.custom)
        self.custom = [p for p in self.custom if p.id != profile_id]
        if len(self.custom) == before:
            return False
        if self.active_profile_id == profile_id:
            self.active_profile_id = DEFAULT_PROFILE_ID
        if self.encounter_profile_id == profile_id:
            self.encounter_profile_id = None
        self._persist()
        return True

    def duplicate_profile(self, profile_id: str) -> EncounterProfile:
        original = self.get_profile(profile_id)
        if original is None:
            raise ProfileError(["Profile not found"])
        return self.save_profile(
            replace(original, id=_new_profile_id(), name=f"{original.name} (Copy)", is_preset=False)
        )

    def export_profile(self, profile_id: str) -> Optional[str]:
        profile = self.get_profile(profile_id)
        if profile is None:
            return None
        data = profile.to_json()
        for key in ("id", "isPreset"):
            data.pop(key, None)
        return json.dumps(data, indent=2, ensure_ascii=False)

    def import_profile(self, text: str) -> EncounterProfile:
        """Create a custom profile from exported JSON.

        Labels missing from the payload are taken from the default combat profile.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProfileError(["Invalid JSON or profile format"]) from exc
        if not isinstance(data, dict):
            raise ProfileError(["Invalid JSON or profile format"])

        base = DEFAULT_COMBAT_PROFILE.to_json()
        for key in _FIELD_KEYS.values():
            if key in data and key not in PROMPT_VARIABLES_KEYS:
                base[key] = data[key]
        for key in PROMPT_VARIABLES_KEYS:
            base[key] = data.get(key)
        base.update(
            id=_new_profile_id(),
            name=data.get("name") or "Imported Profile",
            description=data.get("description") or "",
            isPreset=False,
        )
        return self.save_profile(EncounterProfile.from_json(base))

    # -------------------------------------------------

    def _load(self) -> None:
        data = read_json(self.path, {})
        if not isinstance(data, dict):
            return
        self.custom = [
            EncounterProfile.from_json(item)
            for item in data.get("profiles") or []
            if isinstance(item, Mapping) and item.get("id") not in _PRESETS_BY_ID
        ]
        self.active_profile_id = self.active_profile_id or data.get("activeProfileId")

    def _persist(self) -> None:
        if self.path is None:
            return
        payload = {
            "activeProfileId": self.active_profile_id,
            "profiles": [profile.to_json() for profile in self.custom],
        }
        try:
            atomic_write_json(self.path, payload)
        except OSError as exc:
            logger.warning("[PROFILE] failed to save profiles to %s: %s", self.path, exc)


__all__ = [
    "DEFAULT_PROFILE_ID",
    "DEFAULT_COMBAT_PROFILE",
    "PRESET_PROFILES",
    "FORBIDDEN_KEYWORDS",
    "MAX_FIELD_LENGTH",
    "EncounterProfile",
    "ProfileError",
    "ProfileRegistry",
    "sanitize_profile_value",
    "sanitize_profile",
    "validate_profile",
]
