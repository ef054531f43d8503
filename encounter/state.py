"""Reconciliation of model-proposed combat stats into the authoritative encounter.

Entities are matched by position. Only hp, maxHp, statuses and customBars
(plus environment and specialInstructions) are ever taken from the model;
everything else on an existing entity is locally owned. Entries past the end
of a local list are new combatants and go to the pending lists instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .llm_interaction.responses import CombatStatsPatch, EntityPatch
from .schemas import CombatStats, CustomBar, Encounter, Enemy, Entity, PartyMember, StatusEffect

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    staged_enemies: List[Enemy] = field(default_factory=list)
    staged_party: List[PartyMember] = field(default_factory=list)
    duplicates: int = 0
    updated_enemies: int = 0
    updated_party: int = 0

    @property
    def staged(self) -> int:
        return len(self.staged_enemies) + len(self.staged_party)


def _pending_enemy(patch: EntityPatch) -> Enemy:
    return Enemy.default(**patch.as_entity_json())


def _pending_member(patch: EntityPatch) -> PartyMember:
    member = PartyMember.default(**patch.as_entity_json())
    member.is_player = False
    return member


def detect_new_entities(
    encounter: Encounter,
    patch: CombatStatsPatch,
    report: Optional[ReconcileReport] = None,
) -> ReconcileReport:
    """Move trailing, unknown entries of ``patch`` into the pending lists.

    The patch is truncated in place so a later merge only sees known entities.
    """
    report = report or ReconcileReport()
    stats = encounter.combat_stats
    if stats is None:
        return report

    if patch.enemies is not None and len(patch.enemies) > len(stats.enemies):
        for extra in patch.enemies[len(stats.enemies):]:
            enemy = _pending_enemy(extra)
            if any(p.name == enemy.name and p.sprite == enemy.sprite for p in encounter.pending_enemies):
                report.duplicates += 1
                continue
            encounter.pending_enemies.append(enemy)
            report.staged_enemies.append(enemy)
        patch.enemies = patch.enemies[: len(stats.enemies)]

    if patch.party is not None and len(patch.party) > len(stats.party):
        for extra in patch.party[len(stats.party):]:
            member = _pending_member(extra)
            if any(p.name == member.name for p in encounter.pending_party):
                report.duplicates += 1
                continue
            encounter.pending_party.append(member)
            report.staged_party.append(member)
        patch.party = patch.party[: len(stats.party)]

    if report.staged:
        logger.info(
            "[RECONCILE] staged %s enemies, %s party members as pending",
            len(report.staged_enemies),
            len(report.staged_party),
        )
    return report


def _merge_entity(entity: Entity, patch: EntityPatch) -> None:
    if patch.max_hp is not None:
        entity.max_hp = max(0, patch.max_hp)
    if patch.hp is not None:
        entity.hp = patch.hp
    if patch.statuses is not None:
        entity.statuses = [StatusEffect.from_json(s.model_dump()) for s in patch.statuses]
    if patch.custom_bars is not None:
        entity.custom_bars = [CustomBar.from_json(b.model_dump()) for b in patch.custom_bars]
    entity.hp = min(max(entity.hp, 0), entity.max_hp)


def merge_combat_stats(
    stats: CombatStats,
    patch: CombatStatsPatch,
    report: Optional[ReconcileReport] = None,
) -> ReconcileReport:
    report = report or ReconcileReport()

    if patch.environment is not None:
        stats.environment = patch.environment
    if patch.special_instructions is not None:
        stats.special_instructions = patch.special_instructions

    for enemy, enemy_patch in zip(stats.enemies, patch.enemies or []):
        _merge_entity(enemy, enemy_patch)
        report.updated_enemies += 1

    for member, member_patch in zip(stats.party, patch.party or []):
        _merge_entity(member, member_patch)
        report.updated_party += 1

    return report


def reconcile(encounter: Encounter, patch: CombatStatsPatch) -> ReconcileReport:
    """Stage new entities, then merge the rest. Never adds or removes a live entity."""
    report = ReconcileReport()
    if encounter.combat_stats is None:
        return report
    detect_new_entities(encounter, patch, report)
    merge_combat_stats(encounter.combat_stats, patch, report)
    return report


__all__ = ["ReconcileReport", "detect_new_entities", "merge_combat_stats", "reconcile"]
