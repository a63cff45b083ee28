"""Unit tests for summary response parsing and the model-backed summarizer."""

import sys
import os
import asyncio

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "nanocontext_server"))

from nanocontext.generation.summarizer import (
    CONTEXT_GENERATION_PROMPT,
    GenerationFault,
    ModelSummarizer,
    extract_from_free_text,
    parse_summary_response,
)
from nanocontext.models import GENERIC_INTENT, GENERIC_TONE, ModelRef, ModelResponse


class ScriptedClient:
    def __init__(self, response):
        self.response = response
        self.calls = []

    async def send_to_model(self, text, prompt, model):
        self.calls.append((text, prompt, model))
        return self.response


MODEL = ModelRef(id="gpt-test", name="Test Model")


def test_parses_plain_json():
    """A JSON response is parsed and normalised."""
    summary = parse_summary_response(
        '{"description": "A launch plan.", "tone": "Formal", "intent": "Proposal",'
        ' "keyArguments": ["timeline", "budget"]}'
    )
    assert summary.summary_text == "A launch plan."
    assert summary.tone == "formal"
    assert summary.intent == "proposal"
    assert summary.key_arguments == ["timeline", "budget"]
    assert summary.confidence == 1.0


def test_parses_code_fenced_json():
    """Markdown code fences are stripped before parsing."""
    response = '```json\n{"description": "Notes.", "tone": "casual", "intent": "email"}\n```'
    summary = parse_summary_response(response)
    assert summary.summary_text == "Notes."
    assert summary.key_arguments == []


def test_parses_json_embedded_in_prose():
    """A JSON object inside prose is found."""
    response = 'Sure! Here it is: {"description": "Guide.", "tone": "technical", "intent": "instruction"} Hope that helps.'
    summary = parse_summary_response(response)
    assert summary.tone == "technical"
    assert summary.intent == "instruction"


def test_json_missing_fields_is_rejected():
    """JSON without required fields is rejected, not mined."""
    assert parse_summary_response('{"description": "Only a description."}') is None
    assert parse_summary_response('{"description": "", "tone": "formal", "intent": "report"}') is None


def test_free_text_fallback():
    """Non-JSON responses fall back to heuristic extraction."""
    response = "This reads like a technical write-up about database indexing strategies."
    summary = parse_summary_response(response)
    assert summary.summary_text == response
    assert summary.tone == "technical"
    assert summary.intent == GENERIC_INTENT
    assert summary.confidence == 0.5


def test_free_text_too_short_is_rejected():
    """Very short or non-string responses are unusable."""
    assert parse_summary_response("no idea") is None
    assert parse_summary_response(None) is None


def test_free_text_long_response_is_clipped():
    """Heuristic summaries are clipped to 150 chars plus ellipsis."""
    summary = extract_from_free_text("word " * 100)
    assert summary.summary_text.endswith("...")
    assert len(summary.summary_text) == 153
    assert summary.tone == GENERIC_TONE


def test_model_summarizer_sends_prompt_and_text():
    """The summarizer sends the stripped text with the generation prompt."""
    async def scenario():
        client = ScriptedClient(
            ModelResponse(
                result_text='{"description": "Report.", "tone": "formal", "intent": "report"}',
                actual_model=MODEL,
            )
        )
        result = await ModelSummarizer(client).generate_summary("  Document body.  ", MODEL)
        assert result.summary.summary_text == "Report."
        assert result.model == MODEL
        assert result.used_fallback is False
        assert client.calls == [("Document body.", CONTEXT_GENERATION_PROMPT, MODEL)]

    asyncio.run(scenario())


def test_model_summarizer_raises_on_backend_error():
    """Backend errors become GenerationFault."""
    async def scenario():
        client = ScriptedClient(ModelResponse(error="rate limited"))
        with pytest.raises(GenerationFault):
            await ModelSummarizer(client).generate_summary("Document body.", MODEL)

    asyncio.run(scenario())


def test_model_summarizer_raises_on_unusable_response():
    """Unparseable responses become GenerationFault."""
    async def scenario():
        client = ScriptedClient(ModelResponse(result_text="??"))
        with pytest.raises(GenerationFault):
            await ModelSummarizer(client).generate_summary("Document body.", MODEL)

    asyncio.run(scenario())
