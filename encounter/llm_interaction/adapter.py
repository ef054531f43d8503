from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Mapping, Optional

import ollama
from ollama import ResponseError

logger = logging.getLogger(__name__)

_RAW_OUTPUT = re.compile(r"raw='(.*?)'", re.DOTALL)


class LLMError(RuntimeError):
    """Base class for every failure of an LLM round-trip."""

    kind = "LLMError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EmptyResponse(LLMError):
    """The generation service returned nothing usable."""

    kind = "EmptyResponse"


class TransportFailure(LLMError):
    """The generation service call itself raised."""

    kind = "TransportFailure"


class LLMAdapter:
    """
    Thin gateway around the Ollama API.
    One request per call; the encounter controller owns the retry policy.
    """

    def __init__(
        self,
        model: str,
        *,
        host: Optional[str] = None,
        default_options: Optional[Mapping[str, Any]] = None,
        stage_options: Optional[Mapping[str, Mapping[str, Any]]] = None,
        json_stages: Iterable[str] = ("init", "action"),
        client: Any = None,
        verbose: bool = False,
    ) -> None:

        self.model = model
        self.default_options = dict(default_options or {})
        self.stage_options = dict(stage_options or {})
        self.json_stages = set(json_stages)
        self.client = client or ollama.AsyncClient(host=host)
        self.verbose = verbose

    # -------------------------------------------------

    async def generate(self, stage: str, prompt: str) -> str:
        options = self._stage_options(stage)
        kwargs: Dict[str, Any] = {"model": self.model, "prompt": prompt, "options": options}
        if stage in self.json_stages:
            kwargs["format"] = "json"

        if self.verbose:
            logger.info("[%s] request started (%s chars)", stage.upper(), len(prompt))

        try:
            response = await self.client.generate(**kwargs)
            content = self._extract_content(response)
        except ResponseError as exc:
            content = self._extract_raw_from_error(exc) or ""
            if not content:
                raise TransportFailure(f"Generation failed: {exc}") from exc
        except Exception as exc:
            raise TransportFailure(f"Generation failed: {exc}") from exc

        content = content.strip()
        if not content:
            raise EmptyResponse("No response received from AI. The model may be unavailable.")

        if self.verbose:
            logger.info("[%s] success (%s chars)", stage.upper(), len(content))
        return content

    # -------------------------------------------------

    def _stage_options(self, stage: str) -> Dict[str, Any]:
        return {**self.default_options, **self.stage_options.get(stage, {})}

    @staticmethod
    def _extract_content(response: Any) -> str:
        content = getattr(response, "response", None)

        if content is None and isinstance(response, dict):
            content = response.get("response")

        if content is None:
            return ""

        if isinstance(content, list):
            content = "".join(map(str, content))

        return str(content)

    @staticmethod
    def _extract_raw_from_error(exc: Exception) -> Optional[str]:
        """JSON-mode failures echo the model output as raw='...'; keep it for the parser."""
        match = _RAW_OUTPUT.search(str(exc))
        return match.group(1) if match else None


__all__ = ["LLMAdapter", "LLMError", "EmptyResponse", "TransportFailure"]
