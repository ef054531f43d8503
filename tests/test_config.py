from __future__ import annotations

from pathlib import Path

from encounter.config import DEFAULT_HISTORY_DEPTH, DEFAULT_MODEL, EncounterSettings, NarrativeStyle


def test_from_env_defaults(monkeypatch):
    for name in ("ENCOUNTER_MODEL", "OLLAMA_HOST", "ENCOUNTER_STATE_ROOT", "ENCOUNTER_HISTORY_DEPTH"):
        monkeypatch.delenv(name, raising=False)
    settings = EncounterSettings.from_env()
    assert settings.model == DEFAULT_MODEL
    assert settings.ollama_host is None
    assert settings.history_depth == DEFAULT_HISTORY_DEPTH


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("ENCOUNTER_MODEL", "llama3")
    monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")
    monkeypatch.setenv("ENCOUNTER_STATE_ROOT", "/tmp/fights")
    monkeypatch.setenv("ENCOUNTER_HISTORY_DEPTH", "nope")
    settings = EncounterSettings.from_env()
    assert settings.model == "llama3"
    assert settings.ollama_host == "http://gpu-box:11434"
    assert settings.state_root == Path("/tmp/fights")
    assert settings.history_depth == DEFAULT_HISTORY_DEPTH


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("ENCOUNTER_MODEL", "llama3")
    monkeypatch.setenv("ENCOUNTER_HISTORY_DEPTH", "4")
    settings = EncounterSettings.from_env(model=None, history_depth=12, state_root="elsewhere")
    assert settings.model == "llama3"
    assert settings.history_depth == 12
    assert settings.state_root == Path("elsewhere")


def test_narrative_style_json_falls_back_per_field():
    base = NarrativeStyle(tense="past")
    style = NarrativeStyle.from_json({"person": "second", "tense": ""}, default=base)
    assert style == NarrativeStyle(tense="past", person="second")
    assert NarrativeStyle.from_json(None, default=base) == base
    assert "past tense second-person omniscient" in style.describe()
