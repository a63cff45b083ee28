"""``generate_summary`` built on top of a ``send_to_model`` backend.

The model is asked for a JSON object; responses are parsed in three tiers:

1. the whole response (Markdown code fences stripped) as JSON,
2. the first flat ``{...}`` object embedded in prose,
3. heuristic extraction from free text (prefix as summary, keyword tone).

A JSON object lacking required fields is rejected outright rather than
being mined heuristically.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from nanocontext.models import GENERIC_INTENT, GENERIC_TONE, ContextSummary, ModelRef, ModelResponse

logger = logging.getLogger(__name__)

MIN_FREE_TEXT_LENGTH = 20
FREE_TEXT_SUMMARY_LENGTH = 150
HEURISTIC_CONFIDENCE = 0.5

_CODE_FENCE = re.compile(r"```(?:json)?\s*")
_JSON_OBJECT = re.compile(r"\{[^{}]*\}")

_TONE_KEYWORDS = (
    ("formal", re.compile(r"formal|professional|academic", re.IGNORECASE)),
    ("casual", re.compile(r"casual|informal|friendly", re.IGNORECASE)),
    ("technical", re.compile(r"technical|scientific|programming", re.IGNORECASE)),
)

CONTEXT_GENERATION_PROMPT = """Analyze the text you are given and generate a concise context description that will be useful for future AI refinement requests.

Your response should capture:
1. Overall tone and style (formal, casual, technical, creative, etc.)
2. Primary intent or purpose of the text
3. Key arguments, points, or themes made
4. Any notable characteristics that would help with text refinement

Provide your analysis in the following JSON format:
{
  "description": "A comprehensive 80-120 word description that captures the essence, tone, and key points of the text for use in future refinement contexts",
  "tone": "primary tone (formal/casual/technical/creative/persuasive/etc.)",
  "intent": "main purpose or goal of the text",
  "keyArguments": ["list", "of", "main", "points", "or", "arguments"]
}

Respond with only the JSON object, no additional text."""


class GenerationFault(Exception):
    """The summarizer failed or its response could not be used."""


class ModelClient(Protocol):
    """Backend that sends text plus an instruction prompt to a model."""

    async def send_to_model(self, text: str, prompt: str, model: ModelRef) -> ModelResponse: ...


@dataclass
class SummaryResult:
    summary: ContextSummary
    model: ModelRef
    used_fallback: bool = False


class Summarizer(Protocol):
    """Summary contract; raises ``GenerationFault`` on failure."""

    async def generate_summary(self, text: str, model: ModelRef) -> SummaryResult: ...


class SummaryPayload(BaseModel):
    """Structured summarizer output."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    description: str = Field(min_length=1)
    tone: str = Field(min_length=1)
    intent: str = Field(min_length=1)
    key_arguments: List[str] = Field(default_factory=list, alias="keyArguments")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator("description", "tone", "intent", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("key_arguments", mode="before")
    @classmethod
    def _clean_arguments(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(arg).strip() for arg in value if str(arg).strip()]


def _to_summary(payload: SummaryPayload) -> ContextSummary:
    return ContextSummary(
        summary_text=payload.description,
        tone=payload.tone.lower(),
        intent=payload.intent.lower(),
        key_arguments=payload.key_arguments,
        confidence=payload.confidence if payload.confidence is not None else 1.0,
    )


def extract_from_free_text(response: str) -> Optional[ContextSummary]:
    """Heuristic fallback for responses that are not JSON."""
    if not response or len(response) < MIN_FREE_TEXT_LENGTH:
        return None

    stripped = response.strip()
    description = stripped[:FREE_TEXT_SUMMARY_LENGTH]
    if len(stripped) > FREE_TEXT_SUMMARY_LENGTH:
        description += "..."

    tone = GENERIC_TONE
    for candidate, pattern in _TONE_KEYWORDS:
        if pattern.search(response):
            tone = candidate
            break

    return ContextSummary(
        summary_text=description,
        tone=tone,
        intent=GENERIC_INTENT,
        key_arguments=[],
        confidence=HEURISTIC_CONFIDENCE,
    )


def parse_summary_response(response: str) -> Optional[ContextSummary]:
    """Turn a raw model response into a ``ContextSummary`` (or ``None``)."""
    if not isinstance(response, str):
        return None

    cleaned = _CODE_FENCE.sub("", response).strip()
    data: Any = None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if match:
            try:
                data = json.loads(match.group())
            except json.JSONDecodeError:
                data = None

    if not isinstance(data, dict):
        logger.warning("Failed to parse context response as JSON, attempting fallback")
        return extract_from_free_text(response)

    try:
        return _to_summary(SummaryPayload.model_validate(data))
    except ValidationError as exc:
        logger.warning("Context response missing required fields: %s", exc.errors())
        return None


class ModelSummarizer:
    """Summarizer that prompts a ``ModelClient`` for structured context."""

    def __init__(self, client: ModelClient, prompt: str = CONTEXT_GENERATION_PROMPT) -> None:
        self._client = client
        self._prompt = prompt

    async def generate_summary(self, text: str, model: ModelRef) -> SummaryResult:
        response = await self._client.send_to_model(text.strip(), self._prompt, model)
        if response.error:
            raise GenerationFault(f"model {model.id} returned an error: {response.error}")

        summary = parse_summary_response(response.result_text)
        if summary is None:
            raise GenerationFault(f"model {model.id} returned an unusable response")

        return SummaryResult(
            summary=summary,
            model=response.actual_model or model,
            used_fallback=response.used_fallback,
        )
