"""Prompt Enhancement Layer: merges stored context into action prompts.

Pure formatting: no I/O, never raises. Missing or low-quality context leaves
the prompt untouched. Built-in action prompts get a delimited
``BACKGROUND CONTEXT`` block; user-authored prompts only get a one-line note
so the user's instruction stays in charge.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from nanocontext.models import GENERIC_INTENT, GENERIC_TONE, ContextRecord

logger = logging.getLogger(__name__)

MIN_SUMMARY_LENGTH = 20
CONTEXT_SUMMARY_MAX_LENGTH = 100
_GENERIC_TONES = frozenset({GENERIC_TONE, "general"})
_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]+")

CONSISTENCY_INSTRUCTION = (
    "Please consider this context when refining the text to maintain consistency "
    "with the overall tone, purpose, and key themes."
)


class ActionType(str, Enum):
    EXPAND = "expand"
    CONDENSE = "condense"
    REWORD = "reword"


class RewordType(str, Enum):
    TONE = "tone"
    SIMPLIFY = "simplify"
    ENGAGING = "engaging"
    AUDIENCE = "audience"


@dataclass
class ActionOptions:
    reword_type: Optional[str] = None
    tone: Optional[str] = None
    audience: Optional[str] = None
    custom_prompt: Optional[str] = None


def is_context_suitable_for_prompts(record: Optional[ContextRecord]) -> bool:
    """True when *record* carries enough signal to improve a prompt."""
    if record is None:
        return False
    if not record.summary_text or len(record.summary_text) < MIN_SUMMARY_LENGTH:
        return False
    if record.tone == GENERIC_TONE and record.intent == GENERIC_INTENT:
        return False
    return True


def format_context_for_prompt(record: Optional[ContextRecord]) -> str:
    """``Context: … | Tone: … | Purpose: …`` with generic values omitted."""
    if record is None:
        return ""

    parts = []
    description = _CONTROL_WHITESPACE.sub(" ", (record.summary_text or "").strip())
    if description:
        parts.append(f"Context: {description}")

    tone = (record.tone or "").strip().lower()
    if tone and tone not in _GENERIC_TONES:
        parts.append(f"Tone: {tone}")

    intent = (record.intent or "").strip()
    if intent and intent != GENERIC_INTENT:
        parts.append(f"Purpose: {intent}")

    return " | ".join(parts)


def build_context_aware_prompt(original_prompt: str, record: Optional[ContextRecord]) -> str:
    """Append a ``BACKGROUND CONTEXT`` block to a built-in action prompt."""
    if not original_prompt or not isinstance(original_prompt, str):
        return original_prompt or ""

    if not is_context_suitable_for_prompts(record):
        logger.debug("build_context_aware_prompt: no suitable context, using original prompt")
        return original_prompt

    formatted = format_context_for_prompt(record)
    if not formatted.strip():
        return original_prompt

    return f"{original_prompt}\n\nBACKGROUND CONTEXT:\n{formatted}\n\n{CONSISTENCY_INSTRUCTION}"


def create_context_summary(
    record: Optional[ContextRecord], max_length: int = CONTEXT_SUMMARY_MAX_LENGTH
) -> str:
    """Short ``tone, intent`` phrase for lighter-touch prompt notes."""
    if record is None:
        return ""

    summary = record.tone if record.tone and record.tone != GENERIC_TONE else ""
    if record.intent and record.intent not in summary:
        summary = f"{summary}, {record.intent}" if summary else record.intent

    if len(summary) > max_length:
        summary = summary[: max_length - 3] + "..."
    return summary


def enhance_custom_prompt(user_prompt: str, record: Optional[ContextRecord]) -> str:
    """Add a one-line characteristics note to a user-authored prompt."""
    if not user_prompt or not is_context_suitable_for_prompts(record):
        return user_prompt

    summary = create_context_summary(record)
    if not summary:
        return user_prompt

    return f"{user_prompt}\n\nNote: This text has the following characteristics: {summary}"


def _base_action_prompt(action: str, options: ActionOptions) -> str:
    if action == ActionType.EXPAND:
        return (
            "Expand this text with more detail, context, and supporting information "
            "while maintaining the original meaning."
        )
    if action == ActionType.CONDENSE:
        return (
            "Condense this text to be more concise while preserving all key points "
            "and essential information."
        )
    if action == ActionType.REWORD:
        if options.reword_type == RewordType.TONE and options.tone:
            return (
                f"Rewrite this text in a {options.tone} tone while maintaining the same "
                "information and key points."
            )
        if options.reword_type == RewordType.SIMPLIFY:
            return (
                "Simplify this text using clearer, more accessible language while "
                "maintaining the original meaning."
            )
        if options.reword_type == RewordType.ENGAGING:
            return (
                "Rewrite this text to be more engaging and compelling while keeping "
                "the same information."
            )
        if options.reword_type == RewordType.AUDIENCE and options.audience:
            return (
                f"Adjust this text for a {options.audience} audience, using appropriate "
                "language and level of detail."
            )
        return "Rewrite this text to improve clarity, flow, and readability."
    return "Improve this text as appropriate."


def generate_context_aware_action_prompt(
    action: str,
    options: Optional[ActionOptions] = None,
    record: Optional[ContextRecord] = None,
) -> str:
    """Prompt for *action*, enhanced with *record* when it is suitable."""
    options = options or ActionOptions()
    try:
        if action == ActionType.REWORD and options.custom_prompt:
            return enhance_custom_prompt(options.custom_prompt, record)
        return build_context_aware_prompt(_base_action_prompt(action, options), record)
    except Exception:
        logger.exception("generate_context_aware_action_prompt failed; using base prompt")
        return options.custom_prompt or _base_action_prompt(action, options)


def get_relevant_context_for_action(
    record: Optional[ContextRecord], action: str
) -> Optional[Dict[str, Any]]:
    """The context fields that matter most for *action*."""
    if record is None:
        return None
    relevant: Dict[str, Any] = {"tone": record.tone, "intent": record.intent}
    if action == ActionType.EXPAND:
        relevant["summary_text"] = record.summary_text
    return relevant
