from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import EncounterSettings, NarrativeStyle
from .history import LogManager
from .llm_interaction.adapter import EmptyResponse, LLMError
from .llm_interaction.prompt_builders import (
    HostContext,
    PromptState,
    build_action_prompt,
    build_init_prompt,
    build_summary_prompt,
)
from .llm_interaction.registry import build_steps
from .llm_interaction.responses import ActionResponse, EnemyAction, PartyAction
from .llm_interaction.step import LLMStep
from .narrator import TranscriptInjector, choose_narrator, deliver_summary
from .profiles import ProfileRegistry
from .schemas import CombatStats, Encounter, Enemy, Entity, LogType, PartyMember
from .state import ReconcileReport, reconcile
from .state_store import EncounterArchive, SnapshotStore

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    CONFIGURING = "configuring"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    PROCESSING = "processing"
    CONCLUDING = "concluding"
    ENDED = "ended"
    ERROR_AWAITING_RETRY = "error_awaiting_retry"


SIDES = ("party", "enemies")


@dataclass(frozen=True)
class PendingRequest:
    """The exact request last sent, kept so a retry is byte-identical."""
    stage: str
    prompt: str
    action: str = ""
    start_message: str = ""


@dataclass
class TurnOutcome:
    action: str
    narrative: str
    enemy_actions: List[EnemyAction] = field(default_factory=list)
    party_actions: List[PartyAction] = field(default_factory=list)
    report: ReconcileReport = field(default_factory=ReconcileReport)
    combat_end: bool = False
    result: Optional[str] = None
    summary: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)


class EncounterController:
    """
    Lifecycle of one encounter for one session.

    Every LLM failure is caught here and nowhere above: the controller records
    it in ``last_error`` and waits for retry() or dismiss_error(). State is only
    touched after a response has validated, then the snapshot is saved.
    """

    def __init__(
        self,
        session_key: str,
        generator: Any,
        store: SnapshotStore,
        transcript: TranscriptInjector,
        *,
        profiles: Optional[ProfileRegistry] = None,
        settings: Optional[EncounterSettings] = None,
        context_provider: Optional[Callable[[], HostContext]] = None,
        archive: Optional[EncounterArchive] = None,
        steps: Optional[Dict[str, LLMStep]] = None,
        auto_conclude: bool = True,
    ) -> None:
        self.session_key = session_key
        self.generator = generator
        self.store = store
        self.transcript = transcript
        self.profiles = profiles or ProfileRegistry()
        self.settings = settings or EncounterSettings()
        self.context_provider = context_provider or HostContext
        self.archive = archive
        self.steps = steps or build_steps()
        self.auto_conclude = auto_conclude

        self.phase = Phase.IDLE
        self.transitions: List[Phase] = [Phase.IDLE]
        self._reset()

    # -------------------------------------------------
    # Session
    # -------------------------------------------------

    async def open(self) -> bool:
        """True when a saved encounter exists and can be continued."""
        if self.busy:
            return False
        if await self.store.exists(self.session_key):
            logger.info("[OPEN] saved encounter found for %s", self.session_key)
            return True
        self._reset()
        self._set_phase(Phase.CONFIGURING)
        return False

    async def continue_encounter(self) -> bool:
        if self.busy:
            return False
        data = await self.store.load(self.session_key)
        if data is None:
            return False

        self._reset()
        self.encounter = Encounter.from_json(data)
        self.log = LogManager(self.encounter)
        self.profiles.set_encounter_profile(self.encounter.profile_id)
        self._set_phase(Phase.ACTIVE if self.encounter.initialized else Phase.CONFIGURING)
        return True

    async def new_encounter(self) -> bool:
        if self.busy:
            return False
        await self.store.clear(self.session_key)
        self._reset()
        self.profiles.set_encounter_profile(None)
        self._set_phase(Phase.CONFIGURING)
        return True

    def configure(
        self,
        profile_id: Optional[str] = None,
        combat_style: Optional[NarrativeStyle] = None,
        summary_style: Optional[NarrativeStyle] = None,
    ) -> bool:
        if self.phase is not Phase.CONFIGURING:
            return False
        if profile_id is not None:
            if not self.profiles.set_encounter_profile(profile_id):
                return False
            self.encounter.profile_id = profile_id
        if combat_style is not None:
            self.settings = replace(self.settings, combat_style=combat_style)
        if summary_style is not None:
            self.settings = replace(self.settings, summary_style=summary_style)
        return True

    def close(self) -> bool:
        """Forget the in-memory encounter; the last saved snapshot stays on disk."""
        if self.busy:
            return False
        self._reset()
        self._set_phase(Phase.IDLE)
        return True

    @property
    def busy(self) -> bool:
        return self.is_initializing or self.is_processing

    def snapshot(self) -> Dict[str, Any]:
        return self.encounter.to_json()

    # -------------------------------------------------
    # LLM round-trips
    # -------------------------------------------------

    async def initialize(self) -> bool:
        can_start = self.phase is Phase.CONFIGURING or (
            self.phase is Phase.ERROR_AWAITING_RETRY and self.error_phase is Phase.CONFIGURING
        )
        if not can_start or self.busy:
            return False

        ctx = self.context_provider()
        start_message = ctx.last_message
        prompt = build_init_prompt(self._prompt_state(ctx, start_message=start_message))
        return await self._run_init(PendingRequest("init", prompt, start_message=start_message))

    async def submit_action(self, action: str) -> Optional[TurnOutcome]:
        action = action.strip()
        if self.phase is not Phase.ACTIVE or self.busy or not action:
            return None
        if self.encounter.combat_stats is None:
            return None

        ctx = self.context_provider()
        state = self._prompt_state(
            ctx,
            combat_stats=self.encounter.combat_stats,
            encounter_log=list(self.encounter.encounter_log),
            action=action,
        )
        prompt = build_action_prompt(state)
        return await self._run_action(PendingRequest("action", prompt, action=action))

    async def retry(self) -> bool:
        """Re-send the failed request exactly as it was first sent."""
        request = self.last_request
        if self.busy or request is None:
            return False

        if self.phase is Phase.ERROR_AWAITING_RETRY:
            if request.stage == "init":
                return await self._run_init(request)
            if request.stage == "action":
                return await self._run_action(request) is not None
            return False

        if self.phase is Phase.CONCLUDING and request.stage == "summary":
            return await self._summarize(request.prompt) is not None
        return False

    def dismiss_error(self) -> bool:
        if self.phase is Phase.ERROR_AWAITING_RETRY:
            self._set_phase(self.error_phase or Phase.ACTIVE)
            self.error_phase = None
            self.last_error = None
            self.last_request = None
            return True
        if self.phase is Phase.CONCLUDING and self.last_error is not None:
            self.last_error = None
            return True
        return False

    async def conclude(self, result: str = "interrupted") -> Optional[str]:
        """End the encounter and post the summary. Returns the summary text."""
        if self.busy:
            return None
        if self.phase is Phase.ACTIVE:
            self.result = result
            self._set_phase(Phase.CONCLUDING)
            await self._persist()
        elif self.phase is not Phase.CONCLUDING:
            return None
        return await self._summarize()

    # -------------------------------------------------

    async def _run_init(self, request: PendingRequest) -> bool:
        self.is_initializing = True
        self.last_request = request
        self._set_phase(Phase.INITIALIZING)
        try:
            stats, debug = await self.steps["init"].run(self.generator, request.prompt)
        except LLMError as exc:
            self._fail(exc, Phase.CONFIGURING)
            return False
        finally:
            self.is_initializing = False

        self._assign_player(stats, self.context_provider().user_name)

        self.encounter.combat_stats = stats
        self.encounter.active = True
        self.encounter.initialized = True
        self.encounter.start_message = request.start_message
        self.encounter.profile_id = self.profiles.encounter_profile_id
        if stats.environment:
            self.log.append_entry(stats.environment, LogType.SYSTEM)

        self.last_request = None
        self.last_error = None
        self.last_debug = debug
        self._set_phase(Phase.ACTIVE)
        await self._persist()
        logger.info(
            "[INIT] encounter ready: %s party, %s enemies", len(stats.party), len(stats.enemies)
        )
        return True

    async def _run_action(self, request: PendingRequest) -> Optional[TurnOutcome]:
        self.is_processing = True
        self.last_request = request
        self._set_phase(Phase.PROCESSING)
        try:
            response, debug = await self.steps["action"].run(self.generator, request.prompt)
        except LLMError as exc:
            self._fail(exc, Phase.ACTIVE)
            return None
        finally:
            self.is_processing = False

        report = reconcile(self.encounter, response.combat_stats)
        self.log.append_round(
            request.action,
            response.enemy_actions,
            response.party_actions,
            response.narrative,
        )

        self.last_request = None
        self.last_error = None
        self.last_debug = debug
        outcome = self._outcome(request.action, response, report, debug)
        self.last_outcome = outcome

        if not response.combat_end:
            self._set_phase(Phase.ACTIVE)
            await self._persist()
            return outcome

        self.result = response.result or "unknown"
        self._set_phase(Phase.CONCLUDING)
        await self._persist()
        if self.auto_conclude:
            outcome.summary = await self._summarize()
        return outcome

    async def _summarize(self, prompt: Optional[str] = None) -> Optional[str]:
        ctx = self.context_provider()
        result = self.result or "unknown"
        if prompt is None:
            state = self._prompt_state(
                ctx,
                encounter_log=list(self.encounter.encounter_log),
                start_message=self.encounter.start_message,
            )
            prompt = build_summary_prompt(state, result)

        self.is_processing = True
        self.last_request = PendingRequest("summary", prompt)
        try:
            summary, _ = await self.steps["summary"].run(self.generator, prompt)
            speaker = choose_narrator(ctx)
            self.delivery = await deliver_summary(self.transcript, speaker, summary)
        except LLMError as exc:
            self.last_error = exc
            logger.warning("[SUMMARY] failed: %s", exc.message)
            return None
        finally:
            self.is_processing = False

        self.summary = summary
        await self._archive(summary, result)
        await self.store.clear(self.session_key)
        self.encounter.active = False
        self.last_request = None
        self.last_error = None
        self._set_phase(Phase.ENDED)
        logger.info("[SUMMARY] encounter ended (%s), summary %s", result, self.delivery)
        return summary

    async def _resolve_narrative(self, action: str, round_index: int) -> str:
        ctx = self.context_provider()
        state = self._prompt_state(
            ctx,
            combat_stats=self.encounter.combat_stats,
            encounter_log=list(self.encounter.encounter_log[:round_index]),
            action=action,
        )
        response, _ = await self.steps["action"].run(self.generator, build_action_prompt(state))
        if not response.narrative.strip():
            raise EmptyResponse("The regenerated response had no narrative.")
        return response.narrative

    # -------------------------------------------------
    # User intents
    # -------------------------------------------------

    async def edit_entity(self, side: str, index: int, changes: Mapping[str, Any]) -> bool:
        entities = self._side(side)
        if entities is None or not 0 <= index < len(entities):
            return False

        current = entities[index]
        data = current.to_json()
        data.update({k: v for k, v in changes.items() if k != "isPlayer"})
        updated = type(current).from_json(data)
        if isinstance(updated, PartyMember):
            updated.is_player = current.is_player
        updated.hp = min(max(updated.hp, 0), updated.max_hp)
        entities[index] = updated
        await self._persist()
        return True

    async def add_entity(self, side: str, data: Optional[Mapping[str, Any]] = None) -> bool:
        entities = self._side(side)
        if entities is None:
            return False
        overrides = dict(data or {})
        if side == "enemies":
            entities.append(Enemy.default(**overrides))
        else:
            overrides["isPlayer"] = False
            entities.append(PartyMember.default(**overrides))
        await self._persist()
        return True

    async def delete_entity(self, side: str, index: int) -> bool:
        entities = self._side(side)
        if entities is None or not 0 <= index < len(entities):
            return False
        if isinstance(entities[index], PartyMember) and entities[index].is_player:
            return False
        del entities[index]
        await self._persist()
        return True

    async def accept_pending(self, side: str, index: int) -> bool:
        pending = self._pending(side)
        entities = self._side(side)
        if pending is None or entities is None or not 0 <= index < len(pending):
            return False
        entities.append(pending.pop(index))
        await self._persist()
        return True

    async def discard_pending(self, side: str, index: int) -> bool:
        pending = self._pending(side)
        if pending is None or not 0 <= index < len(pending) or not self._editable():
            return False
        del pending[index]
        await self._persist()
        return True

    async def restore_player(self) -> bool:
        if not self._editable() or self.encounter.combat_stats is None:
            return False
        player = self.encounter.combat_stats.player
        if player is None:
            return False
        player.hp = math.ceil(player.max_hp / 2)
        await self._persist()
        return True

    async def set_special_instructions(self, text: str) -> bool:
        if not self._editable() or self.encounter.combat_stats is None:
            return False
        self.encounter.combat_stats.special_instructions = text.strip()
        await self._persist()
        return True

    async def swipe_log_entry(self, index: int, direction: int) -> bool:
        if not self._editable() or not 0 <= index < len(self.encounter.display_log):
            return False
        if not self.log.swipe(index, direction):
            return False
        await self._persist()
        return True

    async def regenerate_log_entry(self, index: int) -> bool:
        """Add a new alternate to a narrative line. A failure only sets ``regen_error``."""
        self.regen_error = None
        if not self._editable() or not 0 <= index < len(self.encounter.display_log):
            return False
        if self.encounter.display_log[index].type is not LogType.NARRATIVE:
            return False
        round_index = self.log.round_of(index)
        if round_index is None:
            return False

        async def resolve(action: str) -> str:
            return await self._resolve_narrative(action, round_index)

        self.is_processing = True
        try:
            await self.log.regenerate(index, resolve)
        except LLMError as exc:
            self.regen_error = exc
            logger.warning("[REGEN] entry %s failed: %s", index, exc.message)
            return False
        finally:
            self.is_processing = False

        await self._persist()
        return True

    # -------------------------------------------------
    # Internals
    # -------------------------------------------------

    def _reset(self) -> None:
        self.encounter = Encounter()
        self.log = LogManager(self.encounter)
        self.is_initializing = False
        self.is_processing = False
        self.last_error: Optional[LLMError] = None
        self.last_request: Optional[PendingRequest] = None
        self.error_phase: Optional[Phase] = None
        self.last_debug: Dict[str, Any] = {}
        self.last_outcome: Optional[TurnOutcome] = None
        self.regen_error: Optional[LLMError] = None
        self.result: Optional[str] = None
        self.summary: Optional[str] = None
        self.delivery: Optional[str] = None

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            logger.debug("[PHASE] %s -> %s", self.phase.value, phase.value)
        self.phase = phase
        self.transitions.append(phase)

    def _fail(self, exc: LLMError, back_to: Phase) -> None:
        self.last_error = exc
        self.error_phase = back_to
        self._set_phase(Phase.ERROR_AWAITING_RETRY)
        stage = self.last_request.stage if self.last_request else "llm"
        logger.warning("[%s] %s: %s", stage.upper(), exc.kind, exc.message)

    def _editable(self) -> bool:
        return self.phase is Phase.ACTIVE and not self.busy

    def _side(self, side: str) -> Optional[List[Entity]]:
        stats = self.encounter.combat_stats
        if side not in SIDES or stats is None or not self._editable():
            return None
        return stats.party if side == "party" else stats.enemies

    def _pending(self, side: str) -> Optional[list]:
        if side not in SIDES:
            return None
        return self.encounter.pending_party if side == "party" else self.encounter.pending_enemies

    def _prompt_state(self, ctx: HostContext, **values: Any) -> PromptState:
        return PromptState(
            context=ctx,
            settings=self.settings,
            profile=self.profiles.get_active_profile(),
            **values,
        )

    @staticmethod
    def _assign_player(stats: CombatStats, user_name: str) -> None:
        """Exactly one party member ends up flagged as the player."""
        if not stats.party:
            return
        chosen = next((m for m in stats.party if m.is_player), None)
        if chosen is None:
            wanted = user_name.strip().casefold()
            chosen = next((m for m in stats.party if m.name.strip().casefold() == wanted), stats.party[0])
        for member in stats.party:
            member.is_player = member is chosen

    @staticmethod
    def _outcome(
        action: str,
        response: ActionResponse,
        report: ReconcileReport,
        debug: Dict[str, Any],
    ) -> TurnOutcome:
        return TurnOutcome(
            action=action,
            narrative=response.narrative,
            enemy_actions=list(response.enemy_actions),
            party_actions=list(response.party_actions),
            report=report,
            combat_end=response.combat_end,
            result=response.result,
            debug=debug,
        )

    async def _persist(self) -> None:
        try:
            await self.store.save(self.session_key, self.encounter.to_json())
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to write encounter snapshot: %s", exc)

    async def _archive(self, summary: str, result: str) -> None:
        if self.archive is None:
            return
        try:
            await self.archive.append(
                self.session_key,
                log=[entry.to_json() for entry in self.encounter.encounter_log],
                summary=summary,
                result=result,
            )
        except OSError as exc:
            logger.warning("Failed to archive finished encounter: %s", exc)


__all__ = ["Phase", "PendingRequest", "TurnOutcome", "EncounterController", "SIDES"]
