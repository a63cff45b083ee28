"""Unit tests for context-aware prompt construction."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "nanocontext_server"))

from nanocontext.models import GENERIC_INTENT, GENERIC_TONE, ContextRecord
from nanocontext.prompts.enhancer import (
    CONSISTENCY_INSTRUCTION,
    ActionOptions,
    build_context_aware_prompt,
    create_context_summary,
    enhance_custom_prompt,
    format_context_for_prompt,
    generate_context_aware_action_prompt,
    get_relevant_context_for_action,
    is_context_suitable_for_prompts,
)


def _record(**overrides):
    fields = dict(
        fingerprint="fp1",
        summary_text="An internal proposal arguing for a phased database migration.",
        tone="persuasive",
        intent="proposal",
        source_model_id="gpt-test",
        text_length=800,
        created_at=1.0,
    )
    fields.update(overrides)
    return ContextRecord(**fields)


def test_suitability():
    """Short or fully generic context is not worth adding to a prompt."""
    assert is_context_suitable_for_prompts(_record())
    assert not is_context_suitable_for_prompts(None)
    assert not is_context_suitable_for_prompts(_record(summary_text="Too short."))
    assert not is_context_suitable_for_prompts(_record(tone=GENERIC_TONE, intent=GENERIC_INTENT))
    assert is_context_suitable_for_prompts(_record(tone=GENERIC_TONE))


def test_format_context_omits_generic_values():
    """Generic tone and intent are left out of the context line."""
    formatted = format_context_for_prompt(_record())
    assert formatted == (
        "Context: An internal proposal arguing for a phased database migration. "
        "| Tone: persuasive | Purpose: proposal"
    )

    generic = format_context_for_prompt(_record(tone=GENERIC_TONE, intent=GENERIC_INTENT))
    assert generic == "Context: An internal proposal arguing for a phased database migration."


def test_format_context_flattens_newlines():
    """Control whitespace is flattened to single spaces."""
    formatted = format_context_for_prompt(_record(summary_text="Line one.\nLine two."))
    assert formatted.startswith("Context: Line one. Line two.")


def test_build_prompt_appends_background_block():
    """Built-in prompts get a BACKGROUND CONTEXT block."""
    prompt = build_context_aware_prompt("Condense this text.", _record())
    assert prompt.startswith("Condense this text.\n\nBACKGROUND CONTEXT:\nContext: ")
    assert prompt.endswith(CONSISTENCY_INSTRUCTION)


def test_build_prompt_without_context_is_unchanged():
    """No context leaves the prompt untouched."""
    assert build_context_aware_prompt("Condense this text.", None) == "Condense this text."
    assert build_context_aware_prompt("", _record()) == ""


def test_context_summary():
    """The short summary joins tone and intent within max_length."""
    assert create_context_summary(_record()) == "persuasive, proposal"
    assert create_context_summary(_record(tone=GENERIC_TONE)) == "proposal"
    assert create_context_summary(_record(intent="x" * 200), max_length=20) == "persuasive, xxxxx..."
    assert create_context_summary(None) == ""


def test_custom_prompt_gets_light_note():
    """User prompts only get a one-line note."""
    prompt = enhance_custom_prompt("Make it rhyme.", _record())
    assert prompt == "Make it rhyme.\n\nNote: This text has the following characteristics: persuasive, proposal"
    assert enhance_custom_prompt("Make it rhyme.", None) == "Make it rhyme."


def test_action_prompts():
    """Each action and reword option has its own base prompt."""
    expand = generate_context_aware_action_prompt("expand")
    assert expand.startswith("Expand this text")

    tone = generate_context_aware_action_prompt("reword", ActionOptions(reword_type="tone", tone="friendly"))
    assert "friendly tone" in tone

    audience = generate_context_aware_action_prompt(
        "reword", ActionOptions(reword_type="audience", audience="executive")
    )
    assert "executive audience" in audience

    fallback = generate_context_aware_action_prompt("reword", ActionOptions(reword_type="tone"))
    assert fallback == "Rewrite this text to improve clarity, flow, and readability."

    assert generate_context_aware_action_prompt("unknown") == "Improve this text as appropriate."


def test_action_prompt_with_context():
    """Action prompts carry suitable context."""
    prompt = generate_context_aware_action_prompt("condense", None, _record())
    assert "BACKGROUND CONTEXT" in prompt
    assert "Purpose: proposal" in prompt


def test_custom_reword_prompt_uses_note_not_block():
    """Custom reword prompts use the note, not the block."""
    prompt = generate_context_aware_action_prompt(
        "reword", ActionOptions(custom_prompt="Make it sound like a pirate."), _record()
    )
    assert prompt.startswith("Make it sound like a pirate.")
    assert "BACKGROUND CONTEXT" not in prompt
    assert "Note: This text has the following characteristics" in prompt


def test_relevant_context_for_action():
    """Expand also receives the summary text."""
    record = _record()
    assert get_relevant_context_for_action(record, "expand") == {
        "tone": "persuasive",
        "intent": "proposal",
        "summary_text": record.summary_text,
    }
    assert get_relevant_context_for_action(record, "condense") == {"tone": "persuasive", "intent": "proposal"}
    assert get_relevant_context_for_action(None, "expand") is None
