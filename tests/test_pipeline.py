from __future__ import annotations

import asyncio
import json

from encounter.config import EncounterSettings, NarrativeStyle
from encounter.llm_interaction.adapter import TransportFailure
from encounter.llm_interaction.step import MalformedJSON
from encounter.narrator import MemoryTranscript
from encounter.pipeline import EncounterController, Phase
from encounter.profiles import ProfileRegistry
from encounter.schemas import LogType

from conftest import INIT_RESPONSE, TWO_ENEMY_INIT, BrokenSendTranscript, FakeGenerator, make_context


def _start(controller, generator, init=INIT_RESPONSE):
    generator.queue(init)
    assert asyncio.run(controller.open()) is False
    assert asyncio.run(controller.initialize()) is True
    assert controller.phase is Phase.ACTIVE


def _goblin_dies(narrative="The goblin falls.", **extra):
    payload = {
        "combatStats": {
            "party": [{"name": "Hero", "hp": 92, "maxHp": 100}],
            "enemies": [{"name": "Goblin", "hp": 0, "maxHp": 30}],
        },
        "enemyActions": [{"enemyName": "Goblin", "action": "slashes wildly"}],
        "partyActions": [],
        "narrative": narrative,
        "combatEnd": True,
        "result": "victory",
    }
    payload.update(extra)
    return payload


def test_goblin_victory_ends_with_summary(controller, generator, transcript, archive, store):
    _start(controller, generator)
    generator.queue(_goblin_dies(), "[FIGHT CONCLUDED]\nThe goblin lay still in the mud.")

    outcome = asyncio.run(controller.submit_action("I swing at the goblin"))

    assert outcome is not None
    assert outcome.combat_end is True
    assert outcome.result == "victory"
    assert outcome.summary == "The goblin lay still in the mud."
    assert generator.stages == ["init", "action", "summary"]
    assert controller.transitions[-2:] == [Phase.CONCLUDING, Phase.ENDED]
    assert controller.phase is Phase.ENDED
    assert controller.encounter.active is False
    assert controller.encounter.combat_stats.enemies[0].hp == 0
    assert controller.encounter.combat_stats.party[0].hp == 92

    assert transcript.messages[-1] == {"name": "Mira", "mes": "The goblin lay still in the mud."}
    assert controller.delivery == "sent"

    history = asyncio.run(archive.list("chat-1"))
    assert len(history) == 1
    assert history[0]["result"] == "victory"
    assert history[0]["log"][0]["action"].startswith("I swing at the goblin")
    assert asyncio.run(store.exists("chat-1")) is False


def test_summary_prompt_carries_rounds_and_trigger(controller, generator):
    _start(controller, generator)
    generator.queue(_goblin_dies(), "[FIGHT CONCLUDED] Done.")
    asyncio.run(controller.submit_action("I swing at the goblin"))

    summary_prompt = generator.calls[-1][1]
    assert "Round 1:\nI swing at the goblin\nGoblin: slashes wildly\nThe goblin falls." in summary_prompt
    assert "<trigger>\nA goblin leaps out of the bushes!\n</trigger>" in summary_prompt
    assert "Combat has ended with result: Victory" in summary_prompt


def test_third_enemy_goes_to_pending(controller, generator):
    _start(controller, generator, TWO_ENEMY_INIT)
    generator.queue(
        {
            "combatStats": {
                "party": [{"name": "Hero", "hp": 100}],
                "enemies": [
                    {"name": "Goblin", "hp": 25},
                    {"name": "Orc", "hp": 60},
                    {"name": "Wolf", "hp": 25, "maxHp": 25, "sprite": "🐺"},
                ],
            },
            "narrative": "A wolf howls and joins the fight.",
            "combatEnd": False,
        }
    )

    outcome = asyncio.run(controller.submit_action("I hold my ground"))

    assert [e.name for e in controller.encounter.combat_stats.enemies] == ["Goblin", "Orc"]
    assert [e.name for e in controller.encounter.pending_enemies] == ["Wolf"]
    assert [e.name for e in outcome.report.staged_enemies] == ["Wolf"]
    assert controller.phase is Phase.ACTIVE

    assert asyncio.run(controller.accept_pending("enemies", 0)) is True
    assert [e.name for e in controller.encounter.combat_stats.enemies] == ["Goblin", "Orc", "Wolf"]
    assert controller.encounter.pending_enemies == []


def test_discard_pending(controller, generator):
    _start(controller, generator)
    generator.queue(
        {
            "combatStats": {"party": [{"hp": 100}, {"name": "Mira", "hp": 60}]},
            "narrative": "Mira steps in beside you.",
        }
    )
    asyncio.run(controller.submit_action("I call for help"))
    assert [m.name for m in controller.encounter.pending_party] == ["Mira"]

    assert asyncio.run(controller.discard_pending("party", 0)) is True
    assert controller.encounter.pending_party == []
    assert len(controller.encounter.combat_stats.party) == 1


def test_malformed_reply_waits_for_retry(controller, generator):
    _start(controller, generator)
    before = controller.encounter.combat_stats.to_json()
    log_before = len(controller.encounter.display_log)
    generator.queue("The goblin attacks! No JSON today.")

    outcome = asyncio.run(controller.submit_action("I swing at the goblin"))

    assert outcome is None
    assert controller.phase is Phase.ERROR_AWAITING_RETRY
    assert isinstance(controller.last_error, MalformedJSON)
    assert controller.last_error.kind == "MalformedJSON"
    assert controller.last_request.action == "I swing at the goblin"
    assert controller.encounter.combat_stats.to_json() == before
    assert len(controller.encounter.display_log) == log_before
    assert controller.busy is False

    generator.queue({"combatStats": {"enemies": [{"hp": 18}]}, "narrative": "Steel bites."})
    assert asyncio.run(controller.retry()) is True

    assert generator.calls[-1][1] == generator.calls[-2][1]
    assert controller.phase is Phase.ACTIVE
    assert controller.last_error is None
    assert controller.encounter.combat_stats.enemies[0].hp == 18
    player_lines = [e.message for e in controller.encounter.display_log if e.type is LogType.PLAYER_ACTION]
    assert player_lines == ["You: I swing at the goblin"]


def test_dismiss_error_returns_to_active(controller, generator):
    _start(controller, generator)
    generator.queue(TransportFailure("connection refused"))
    asyncio.run(controller.submit_action("I swing"))
    assert controller.phase is Phase.ERROR_AWAITING_RETRY

    assert controller.dismiss_error() is True
    assert controller.phase is Phase.ACTIVE
    assert controller.last_error is None
    assert asyncio.run(controller.retry()) is False


def test_init_failure_can_be_retried(controller, generator):
    generator.queue("", INIT_RESPONSE)
    asyncio.run(controller.open())

    assert asyncio.run(controller.initialize()) is False
    assert controller.phase is Phase.ERROR_AWAITING_RETRY
    assert controller.last_error.kind == "EmptyResponse"
    assert controller.encounter.combat_stats is None

    assert asyncio.run(controller.retry()) is True
    assert generator.calls[0][1] == generator.calls[1][1]
    assert controller.phase is Phase.ACTIVE
    assert controller.encounter.initialized is True


def test_init_logs_environment_and_trigger(controller, generator):
    _start(controller, generator)
    assert controller.encounter.start_message == "A goblin leaps out of the bushes!"
    assert controller.encounter.display_log[0].message == "A muddy forest clearing"
    assert controller.encounter.display_log[0].type is LogType.SYSTEM


def test_player_assigned_by_user_name(controller, generator):
    init = {
        "party": [{"name": "Mira", "hp": 60}, {"name": "hero", "hp": 100}],
        "enemies": [{"name": "Goblin", "hp": 30}],
    }
    _start(controller, generator, init)
    party = controller.encounter.combat_stats.party
    assert [m.is_player for m in party] == [False, True]


def test_only_one_player_after_init(controller, generator):
    init = {
        "party": [{"name": "Hero", "isPlayer": True}, {"name": "Mira", "isPlayer": True}],
        "enemies": [],
    }
    _start(controller, generator, init)
    assert [m.is_player for m in controller.encounter.combat_stats.party] == [True, False]


def test_resume_restores_identical_state(controller, generator, store, transcript, archive, context):
    _start(controller, generator)
    generator.queue({"combatStats": {"enemies": [{"hp": 20}]}, "narrative": "Hit.\nThe goblin snarls."})
    asyncio.run(controller.submit_action("I swing"))
    asyncio.run(controller.set_special_instructions("Rain makes footing slippery"))
    saved = controller.snapshot()

    fresh = EncounterController(
        "chat-1",
        FakeGenerator(),
        store,
        transcript,
        profiles=ProfileRegistry(),
        context_provider=lambda: context,
        archive=archive,
    )
    assert asyncio.run(fresh.open()) is True
    assert fresh.phase is Phase.IDLE
    assert asyncio.run(fresh.continue_encounter()) is True
    assert fresh.phase is Phase.ACTIVE
    assert fresh.snapshot() == saved


def test_new_encounter_discards_snapshot(controller, generator, store):
    _start(controller, generator)
    assert asyncio.run(store.exists("chat-1")) is True

    assert asyncio.run(controller.new_encounter()) is True
    assert controller.phase is Phase.CONFIGURING
    assert controller.encounter.combat_stats is None
    assert asyncio.run(store.exists("chat-1")) is False


def test_close_keeps_snapshot(controller, generator, store):
    _start(controller, generator)
    assert controller.close() is True
    assert controller.phase is Phase.IDLE
    assert asyncio.run(store.exists("chat-1")) is True


def test_submit_requires_active_phase(controller, generator):
    asyncio.run(controller.open())
    assert asyncio.run(controller.submit_action("I swing")) is None
    assert generator.calls == []


def test_blank_action_is_ignored(controller, generator):
    _start(controller, generator)
    assert asyncio.run(controller.submit_action("   ")) is None
    assert generator.stages == ["init"]


def test_busy_controller_rejects_intents(controller, generator):
    _start(controller, generator)
    controller.is_processing = True
    assert asyncio.run(controller.submit_action("I swing")) is None
    assert asyncio.run(controller.edit_entity("enemies", 0, {"hp": 1})) is False
    assert asyncio.run(controller.restore_player()) is False
    assert asyncio.run(controller.conclude()) is None
    controller.is_processing = False
    assert asyncio.run(controller.edit_entity("enemies", 0, {"hp": 1})) is True


def test_configure_only_while_configuring(controller, generator):
    asyncio.run(controller.open())
    style = NarrativeStyle(tense="past", person="second")
    assert controller.configure("preset-social", combat_style=style) is True
    assert controller.configure("no-such-profile") is False
    assert controller.settings.combat_style == style

    generator.queue(INIT_RESPONSE)
    asyncio.run(controller.initialize())
    assert "Social" in generator.calls[0][1]
    assert controller.encounter.profile_id == "preset-social"
    assert controller.configure("default-combat") is False


def test_edit_entity_keeps_player_and_clamps(controller, generator):
    _start(controller, generator)
    assert asyncio.run(controller.edit_entity("party", 0, {"hp": 400, "isPlayer": False, "name": "Sir Hero"}))
    hero = controller.encounter.combat_stats.party[0]
    assert hero.name == "Sir Hero"
    assert hero.hp == 100
    assert hero.is_player is True
    assert asyncio.run(controller.edit_entity("dragons", 0, {"hp": 1})) is False
    assert asyncio.run(controller.edit_entity("enemies", 5, {"hp": 1})) is False


def test_add_and_delete_entities(controller, generator):
    _start(controller, generator)
    assert asyncio.run(controller.add_entity("enemies", {"name": "Bandit"}))
    assert asyncio.run(controller.add_entity("party", {"name": "Dog", "isPlayer": True}))
    stats = controller.encounter.combat_stats
    assert stats.enemies[-1].name == "Bandit"
    assert stats.enemies[-1].sprite == "👹"
    assert stats.party[-1].is_player is False

    assert asyncio.run(controller.delete_entity("party", 0)) is False
    assert asyncio.run(controller.delete_entity("party", 1)) is True
    assert [m.name for m in stats.party] == ["Hero"]


def test_restore_player_to_half(controller, generator):
    _start(controller, generator)
    generator.queue({"combatStats": {"party": [{"hp": 0, "maxHp": 75}]}, "narrative": "You fall."})
    asyncio.run(controller.submit_action("I charge recklessly"))
    assert asyncio.run(controller.restore_player()) is True
    assert controller.encounter.combat_stats.player.hp == 38


def test_special_instructions_reach_next_prompt(controller, generator):
    _start(controller, generator)
    asyncio.run(controller.set_special_instructions("  The bridge is collapsing  "))
    generator.queue({"combatStats": {}, "narrative": "Planks crack."})
    asyncio.run(controller.submit_action("I run"))
    assert generator.calls[-1][1].endswith("ADDITIONAL INSTRUCTIONS: The bridge is collapsing")


def test_conclude_early_posts_summary(controller, generator, transcript):
    _start(controller, generator)
    generator.queue("[FIGHT CONCLUDED] Both sides backed away.")
    assert asyncio.run(controller.conclude()) == "Both sides backed away."
    assert controller.phase is Phase.ENDED
    assert controller.result == "interrupted"
    assert "Combat has ended with result: interrupted" in generator.calls[-1][1]
    assert transcript.messages[-1]["mes"] == "Both sides backed away."


def test_summary_failure_stays_concluding(controller, generator, transcript):
    _start(controller, generator)
    generator.queue(_goblin_dies(), TransportFailure("timeout"), "[FIGHT CONCLUDED] At last.")

    outcome = asyncio.run(controller.submit_action("I swing"))
    assert outcome.summary is None
    assert controller.phase is Phase.CONCLUDING
    assert controller.last_error.kind == "TransportFailure"
    assert len(transcript.messages) == 1

    assert asyncio.run(controller.retry()) is True
    assert generator.calls[-1][1] == generator.calls[-2][1]
    assert controller.phase is Phase.ENDED
    assert transcript.messages[-1]["mes"] == "At last."


def test_summary_falls_back_to_append(generator, store, archive, context):
    transcript = BrokenSendTranscript()
    transcript.messages.append({"name": "Hero", "mes": "A goblin leaps out of the bushes!"})
    controller = EncounterController(
        "chat-1",
        generator,
        store,
        transcript,
        settings=EncounterSettings(),
        context_provider=lambda: context,
        archive=archive,
    )
    _start(controller, generator)
    generator.queue(_goblin_dies(), "[FIGHT CONCLUDED] Quiet returns.")
    asyncio.run(controller.submit_action("I swing"))

    assert controller.delivery == "appended"
    assert transcript.messages[-1]["mes"].endswith("\n\nQuiet returns.")
    assert controller.phase is Phase.ENDED


def test_summary_delivery_total_failure(generator, store, context):
    class Unreachable(MemoryTranscript):
        async def send_as(self, speaker, text):
            raise RuntimeError("offline")

    controller = EncounterController(
        "chat-1", generator, store, Unreachable(), context_provider=lambda: context
    )
    _start(controller, generator)
    generator.queue(_goblin_dies(), "[FIGHT CONCLUDED] Gone.")
    asyncio.run(controller.submit_action("I swing"))

    assert controller.phase is Phase.CONCLUDING
    assert isinstance(controller.last_error, TransportFailure)


def test_group_summary_uses_narrator_card(generator, store, transcript):
    from encounter.llm_interaction.prompt_builders import CharacterCard

    context = make_context(
        is_group=True,
        characters=[CharacterCard(name="Mira"), CharacterCard(name="Game Master")],
    )
    controller = EncounterController(
        "chat-1", generator, store, transcript, context_provider=lambda: context
    )
    _start(controller, generator)
    generator.queue(_goblin_dies(), "[FIGHT CONCLUDED] The end.")
    asyncio.run(controller.submit_action("I swing"))
    assert transcript.messages[-1]["name"] == "Game Master"


def test_regenerate_narrative_line(controller, generator):
    _start(controller, generator)
    generator.queue({"combatStats": {"enemies": [{"hp": 20}]}, "narrative": "Steel rings."})
    asyncio.run(controller.submit_action("I swing"))
    index = len(controller.encounter.display_log) - 1
    stats_before = controller.encounter.combat_stats.to_json()

    generator.queue({"combatStats": {"enemies": [{"hp": 1}]}, "narrative": "Sparks fly."})
    assert asyncio.run(controller.regenerate_log_entry(index)) is True

    entry = controller.encounter.display_log[index]
    assert entry.swipes == ["Steel rings.", "Sparks fly."]
    assert controller.encounter.encounter_log[0].narrative == "Sparks fly."
    assert controller.encounter.combat_stats.to_json() == stats_before
    assert "Previous Combat Actions" not in generator.calls[-1][1]

    assert asyncio.run(controller.swipe_log_entry(index, -1)) is True
    assert controller.encounter.encounter_log[0].narrative == "Steel rings."


def test_regenerate_failure_sets_regen_error(controller, generator):
    _start(controller, generator)
    generator.queue({"combatStats": {}, "narrative": "Steel rings."})
    asyncio.run(controller.submit_action("I swing"))
    index = len(controller.encounter.display_log) - 1

    generator.queue({"combatStats": {}, "narrative": ""})
    assert asyncio.run(controller.regenerate_log_entry(index)) is False
    assert controller.regen_error.kind == "EmptyResponse"
    assert controller.phase is Phase.ACTIVE
    assert controller.last_error is None
    assert controller.encounter.display_log[index].swipes == ["Steel rings."]


def test_regenerate_rejects_non_narrative(controller, generator):
    _start(controller, generator)
    generator.queue({"combatStats": {}, "narrative": "Steel rings."})
    asyncio.run(controller.submit_action("I swing"))
    assert asyncio.run(controller.regenerate_log_entry(1)) is False
    assert generator.stages == ["init", "action"]


def test_snapshot_written_after_turn(controller, generator, store):
    _start(controller, generator)
    generator.queue({"combatStats": {"enemies": [{"hp": 11}]}, "narrative": "Hit."})
    asyncio.run(controller.submit_action("I swing"))
    saved = json.loads(store.path_for("chat-1").read_text(encoding="utf-8"))
    assert saved["combatStats"]["enemies"][0]["hp"] == 11
    assert saved["encounterLog"] == [{"action": "I swing", "narrative": "Hit."}]


class HeldGenerator(FakeGenerator):
    """Parks action requests until ``release`` is set."""

    started = None
    release = None

    async def generate(self, stage, prompt):
        if stage == "action":
            self.started.set()
            await self.release.wait()
        return await super().generate(stage, prompt)


def test_session_calls_wait_for_request_in_flight(store, transcript, archive, context):
    generator = HeldGenerator()
    controller = EncounterController(
        "chat-1", generator, store, transcript, context_provider=lambda: context, archive=archive
    )
    _start(controller, generator)
    generator.queue({"combatStats": {"enemies": [{"hp": 9}]}, "narrative": "Late reply."})

    async def scenario():
        generator.started = asyncio.Event()
        generator.release = asyncio.Event()
        turn = asyncio.create_task(controller.submit_action("I swing"))
        await generator.started.wait()

        assert controller.busy is True
        assert await controller.new_encounter() is False
        assert await controller.continue_encounter() is False
        assert await controller.open() is False
        assert controller.close() is False

        generator.release.set()
        return await turn

    outcome = asyncio.run(scenario())

    assert outcome is not None
    assert controller.phase is Phase.ACTIVE
    assert controller.encounter.combat_stats.enemies[0].hp == 9
    assert [e.message for e in controller.encounter.display_log][-2:] == ["You: I swing", "Late reply."]
    assert asyncio.run(store.exists("chat-1")) is True
