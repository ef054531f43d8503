from __future__ import annotations

import asyncio
import json

import pytest

from encounter.llm_interaction.adapter import EmptyResponse, TransportFailure
from encounter.llm_interaction.registry import build_steps
from encounter.llm_interaction.step import (
    MalformedJSON,
    MissingRequiredField,
    extract_json_text,
    normalize_result,
    parse_action,
    parse_init,
    parse_summary,
)

from conftest import INIT_RESPONSE, FakeGenerator


def test_extract_json_strips_fences_and_prose():
    raw = 'Sure! Here you go:\n```json\n{"a": {"b": 1}}\n```\nHope that helps.'
    assert json.loads(extract_json_text(raw)) == {"a": {"b": 1}}


def test_extract_json_drops_think_blocks():
    raw = '<think>maybe {"wrong": true}</think>{"right": true}'
    assert json.loads(extract_json_text(raw)) == {"right": True}


def test_parse_init_builds_combat_stats():
    stats = parse_init(json.dumps(INIT_RESPONSE))
    assert [m.name for m in stats.party] == ["Hero"]
    assert stats.party[0].is_player is True
    goblin = stats.enemies[0]
    assert goblin.sprite == "👺"
    assert goblin.attacks[0].name == "Stab"
    assert goblin.attacks[0].type == "single-target"
    assert stats.environment == "A muddy forest clearing"


def test_parse_init_rejects_non_json():
    with pytest.raises(MalformedJSON):
        parse_init("The goblin attacks! There is no JSON here.")


@pytest.mark.parametrize(
    "payload",
    [
        {"enemies": []},
        {"party": []},
        {"party": {"name": "Hero"}, "enemies": []},
    ],
)
def test_parse_init_requires_party_and_enemy_lists(payload):
    with pytest.raises(MissingRequiredField):
        parse_init(json.dumps(payload))


def test_parse_action_requires_combat_stats():
    with pytest.raises(MissingRequiredField):
        parse_action(json.dumps({"narrative": "Nothing happens."}))


def test_parse_action_optional_fields_default():
    response = parse_action('{"combatStats": {}}')
    assert response.enemy_actions == []
    assert response.party_actions == []
    assert response.narrative == ""
    assert response.combat_end is False
    assert response.combat_stats.enemies is None


def test_parse_action_reads_patch_and_actions():
    response = parse_action(
        json.dumps(
            {
                "combatStats": {"enemies": [{"name": "Goblin", "hp": "12", "maxHp": 30}]},
                "enemyActions": [{"enemyName": "Goblin", "action": "stabs"}],
                "partyActions": None,
                "narrative": "Steel flashes.",
                "combatEnd": "false",
            }
        )
    )
    assert response.combat_stats.enemies[0].hp == 12
    assert response.combat_stats.enemies[0].statuses is None
    assert response.enemy_actions[0].enemy_name == "Goblin"
    assert response.party_actions == []
    assert response.combat_end is False


def test_parse_action_rejects_non_boolean_combat_end():
    with pytest.raises(MissingRequiredField):
        parse_action('{"combatStats": {}, "combatEnd": "maybe"}')


def test_parse_action_normalizes_result_on_end():
    response = parse_action('{"combatStats": {}, "combatEnd": true, "result": "Glorious Victory!"}')
    assert response.result == "victory"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("victory", "victory"),
        ("DEFEAT", "defeat"),
        ("The party fled", "fled"),
        ("escaped", "fled"),
        ("interrupted", "interrupted"),
        ("", "unknown"),
        ("stalemate", "unknown"),
        ("combat closed", "unknown"),
        ("the goblin is losing ground", "defeat"),
        ("the party retreated", "fled"),
    ],
)
def test_normalize_result(value, expected):
    assert normalize_result(value) == expected


def test_parse_summary_strips_sentinel():
    assert parse_summary("[FIGHT CONCLUDED]\nThe goblin lay still.") == "The goblin lay still."
    assert parse_summary("[fight concluded] Done.") == "Done."


def test_parse_summary_blank_is_empty_response():
    with pytest.raises(EmptyResponse):
        parse_summary("[FIGHT CONCLUDED]   ")


def test_step_wraps_generator_crash_as_transport_failure():
    steps = build_steps()
    generator = FakeGenerator(ConnectionError("refused"))
    with pytest.raises(TransportFailure):
        asyncio.run(steps["init"].run(generator, "prompt"))


def test_step_blank_reply_is_empty_response():
    steps = build_steps()
    with pytest.raises(EmptyResponse):
        asyncio.run(steps["action"].run(FakeGenerator("   "), "prompt"))


def test_step_returns_parsed_and_debug():
    steps = build_steps()
    stats, debug = asyncio.run(steps["init"].run(FakeGenerator(INIT_RESPONSE), "the prompt"))
    assert stats.party[0].name == "Hero"
    assert debug["prompt"] == "the prompt"
    assert json.loads(debug["raw"])["environment"] == "A muddy forest clearing"
