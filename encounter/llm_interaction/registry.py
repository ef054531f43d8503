from typing import Dict

from .step import (
    LLMStep,
    parse_action,
    parse_init,
    parse_summary,
)


def build_steps() -> Dict[str, LLMStep]:

    return {
        "init": LLMStep(
            name="init",
            parser=parse_init,
        ),

        "action": LLMStep(
            name="action",
            parser=parse_action,
        ),

        "summary": LLMStep(
            name="summary",
            parser=parse_summary,
        ),
    }
