from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import json
import logging
import re

from pydantic import ValidationError

from encounter.llm_interaction.adapter import EmptyResponse, LLMError, TransportFailure
from encounter.llm_interaction.responses import ActionResponse, InitResponse
from encounter.schemas import CombatStats

logger = logging.getLogger(__name__)

SUMMARY_SENTINEL = "[FIGHT CONCLUDED]"

RESULTS = ("victory", "defeat", "fled", "interrupted")

# first match wins
_RESULT_KEYWORDS = (
    ("victory", re.compile(r"\b(victor\w*|won|wins?|winning)\b")),
    ("defeat", re.compile(r"\b(defeat\w*|lost|lose|loses|losing)\b")),
    ("fled", re.compile(r"\b(fled|flee\w*|escaped?|retreat\w*)\b")),
    ("interrupted", re.compile(r"\binterrupt\w*\b")),
)


class MalformedJSON(LLMError):
    """No JSON object could be located in the response."""

    kind = "MalformedJSON"


class MissingRequiredField(LLMError):
    """The JSON parsed but does not have the required shape."""

    kind = "MissingRequiredField"


# =========================
# Core Step Object
# =========================

@dataclass
class LLMStep:
    """
    Defines a single structured LLM operation: one generation, then parse.
    """
    name: str
    parser: Callable[[str], Any]

    async def run(self, generator: Any, prompt: str) -> tuple[Any, Dict[str, Any]]:
        try:
            raw = await generator.generate(self.name, prompt)
        except LLMError:
            raise
        except Exception as exc:
            raise TransportFailure(f"Generation failed: {exc}") from exc

        if raw is None or not str(raw).strip():
            raise EmptyResponse("No response received from AI. The model may be unavailable.")

        try:
            parsed = self.parser(raw)
        except LLMError as exc:
            logger.warning("[%s] parse failed: %s", self.name.upper(), exc)
            raise

        return parsed, {"prompt": prompt, "raw": raw}


# =========================
# Parsing Helpers
# =========================

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_FENCE_OPEN = re.compile(r"```[a-zA-Z]*\s*")


def extract_json_text(text: str) -> str:
    cleaned = _THINK_BLOCK.sub("", text or "").strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = cleaned.replace("```", "")

    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        cleaned = cleaned[first:last + 1]
    return cleaned.strip()


def parse_encounter_json(text: str) -> Dict[str, Any]:
    cleaned = extract_json_text(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise MalformedJSON(
            "Invalid JSON format detected. The AI returned malformed data."
        ) from exc
    if not isinstance(data, dict):
        raise MalformedJSON("Invalid JSON format detected. Expected an object.")
    return data


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err.get('msg', 'invalid value')}" if location else err.get("msg", "")


def normalize_result(value: Optional[str]) -> str:
    text = str(value or "").strip().lower()
    if text in RESULTS:
        return text
    for result, pattern in _RESULT_KEYWORDS:
        if pattern.search(text):
            return result
    return "unknown"


# =========================
# Step-Specific Parsers
# =========================

def parse_init(text: str) -> CombatStats:
    data = parse_encounter_json(text)

    for key in ("party", "enemies"):
        if not isinstance(data.get(key), list):
            raise MissingRequiredField(f"Initialization response is missing a '{key}' list.")

    try:
        payload = InitResponse.model_validate(data)
    except ValidationError as exc:
        raise MissingRequiredField(f"Invalid initialization data ({_first_error(exc)}).") from exc

    return CombatStats.from_json(payload.model_dump(by_alias=True))


def parse_action(text: str) -> ActionResponse:
    data = parse_encounter_json(text)

    if not isinstance(data.get("combatStats"), dict):
        raise MissingRequiredField("Action response is missing 'combatStats'.")

    try:
        response = ActionResponse.model_validate(data)
    except ValidationError as exc:
        raise MissingRequiredField(f"Invalid action data ({_first_error(exc)}).") from exc

    if response.combat_end:
        response.result = normalize_result(response.result)
    return response


def parse_summary(text: str) -> str:
    summary = _THINK_BLOCK.sub("", text or "").strip()
    summary = re.sub(r"^\s*" + re.escape(SUMMARY_SENTINEL) + r"\s*", "", summary, count=1, flags=re.IGNORECASE)
    summary = summary.strip()
    if not summary:
        raise EmptyResponse("The summary response was empty.")
    return summary


__all__ = [
    "SUMMARY_SENTINEL",
    "LLMStep",
    "MalformedJSON",
    "MissingRequiredField",
    "extract_json_text",
    "parse_encounter_json",
    "normalize_result",
    "parse_init",
    "parse_action",
    "parse_summary",
]
