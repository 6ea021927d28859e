"""Tests for the AI boundary client."""

import pytest
from datetime import date
from unittest.mock import patch

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from lifematrix.models.classification import ClassificationResult, CoachingInsight
from lifematrix.models.task import Quadrant, TaskStatus
from lifematrix.services.ai_client import (
    ParsedResponse,
    ResponseParseError,
    build_classification_prompt,
    get_ai_mood_suggestion,
    get_ai_move_reasoning,
    get_llm_model,
    is_credential_error,
    parse_ai_response,
    perform_ai_breakdown,
    perform_ai_classification,
    strip_code_fence,
)
from lifematrix.utils.errors import (
    AIRequestError,
    AIResponseError,
    CredentialMissingError,
    CredentialRejectedError,
)
from tests.fixtures.ai_responses import (
    TEST_API_KEY,
    AuthenticationError,
    breakdown_reply,
    classification_reply,
    mock_chat_model,
)
from tests.utils.factories import create_task


@pytest.mark.unit
@pytest.mark.parametrize("raw", [
    '```json\n{"insight": "ok"}\n```',
    '```\n{"insight": "ok"}\n```',
    '  {"insight": "ok"}  ',
])
def test_strip_code_fence(raw):
    """Test one surrounding fence, with or without a language tag, is removed."""
    assert strip_code_fence(raw) == '{"insight": "ok"}'


@pytest.mark.unit
def test_parse_valid_fenced_classification():
    """Test a fenced reply parses into the result model."""
    result = parse_ai_response(classification_reply(fenced=True), ClassificationResult)

    assert isinstance(result, ParsedResponse)
    assert result.value.quadrant_enum == Quadrant.DO
    assert result.value.suggested_date == date(2024, 1, 12)


@pytest.mark.unit
def test_parse_invalid_quadrant_is_parse_error():
    """Test a quadrant outside the four valid strings is a parse error, not coerced."""
    result = parse_ai_response(classification_reply(quadrant="unclassified"), ClassificationResult)

    assert isinstance(result, ResponseParseError)
    assert 'invalid quadrant: "unclassified"' in result.reason


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["not json at all", "[1, 2, 3]", '{"reasoning": "missing quadrant"}'])
def test_parse_structurally_invalid(raw):
    """Test invalid JSON, non-objects and schema mismatches are parse errors."""
    result = parse_ai_response(raw, ClassificationResult)

    assert isinstance(result, ResponseParseError)
    assert result.raw_text == raw


@pytest.mark.unit
def test_parse_error_diagnostic_truncates_raw_text():
    """Test the diagnostic carries at most the first 100 characters of the reply."""
    raw = "x" * 300

    diagnostic = parse_ai_response(raw, ClassificationResult).diagnostic()

    assert "x" * 100 in diagnostic
    assert "x" * 101 not in diagnostic


@pytest.mark.unit
def test_get_llm_model_requires_key():
    """Test a missing key fails before any model is built."""
    with pytest.raises(CredentialMissingError):
        get_llm_model("")
    with pytest.raises(CredentialMissingError):
        get_llm_model(None)


@pytest.mark.unit
def test_get_llm_model_anthropic(monkeypatch):
    """Test Anthropic provider builds ChatAnthropic with the configured model."""
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")
    monkeypatch.setenv("LLM_MODEL", "claude-sonnet-4-20250514")

    model = get_llm_model(TEST_API_KEY)

    assert isinstance(model, ChatAnthropic)


@pytest.mark.unit
def test_get_llm_model_openai(monkeypatch):
    """Test OpenAI provider builds ChatOpenAI."""
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("LLM_MODEL", "gpt-4o-mini")

    model = get_llm_model("sk-test-openai-key-0123456789")

    assert isinstance(model, ChatOpenAI)


@pytest.mark.unit
def test_get_llm_model_unknown_provider(monkeypatch):
    """Test an unknown provider is a request error."""
    monkeypatch.setenv("LLM_PROVIDER", "carrier-pigeon")

    with pytest.raises(AIRequestError):
        get_llm_model(TEST_API_KEY)


@pytest.mark.unit
@pytest.mark.parametrize("error,expected", [
    (AuthenticationError(), True),
    (ValueError("API key not valid. Please pass a valid API key."), True),
    (RuntimeError("rate limited"), False),
    (TimeoutError("timed out"), False),
])
def test_is_credential_error(error, expected):
    """Test credential failures are told apart from other failures."""
    assert is_credential_error(error) is expected


@pytest.mark.unit
def test_is_credential_error_follows_cause():
    """Test a wrapped auth failure is still recognised."""
    try:
        try:
            raise AuthenticationError()
        except AuthenticationError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert is_credential_error(outer)


@pytest.mark.unit
def test_classification_prompt_includes_context(student_context):
    """Test the prompt carries the task, context and current planned tasks."""
    task = create_task(name="Revise limits", due_date=date(2024, 1, 18))
    planned = create_task(name="Problem set", quadrant=Quadrant.DO, due_date=date(2024, 1, 9))
    finished = create_task(name="Old quiz", quadrant=Quadrant.DO, status=TaskStatus.COMPLETED)

    prompt = build_classification_prompt(task, student_context, [task, planned, finished], True, today=date(2024, 1, 8))

    assert "Today's Date: 2024-01-08" in prompt["system"]
    assert "Calculus midterm (Due: 2024-01-20)" in prompt["user"]
    assert "Problem set (Due: 2024-01-09)" in prompt["user"]
    assert "Old quiz" not in prompt["user"]
    assert 'Task: "Revise limits" (Current Due: 2024-01-18)' in prompt["user"]
    assert "newly generated recurring task instance" in prompt["user"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_perform_classification_success(sample_task, student_context):
    """Test a valid reply becomes a ClassificationResult."""
    model = mock_chat_model(classification_reply(quadrant="schedule", fenced=True))

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        result = await perform_ai_classification(sample_task, student_context, [sample_task], False, TEST_API_KEY)

    assert result.quadrant == "schedule"
    messages = model.ainvoke.await_args.args[0]
    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_perform_classification_invalid_reply(sample_task, student_context):
    """Test a structurally invalid reply raises AIResponseError with the raw text."""
    model = mock_chat_model("Sorry, I cannot help with that.")

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        with pytest.raises(AIResponseError, match="Sorry, I cannot help"):
            await perform_ai_classification(sample_task, student_context, [], False, TEST_API_KEY)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_perform_classification_rejected_key(sample_task, student_context):
    """Test provider auth failures raise CredentialRejectedError."""
    model = mock_chat_model(AuthenticationError())

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        with pytest.raises(CredentialRejectedError):
            await perform_ai_classification(sample_task, student_context, [], False, TEST_API_KEY)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_perform_classification_transport_failure(sample_task, student_context):
    """Test other failures raise AIRequestError."""
    model = mock_chat_model(RuntimeError("503 overloaded"))

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        with pytest.raises(AIRequestError, match="503 overloaded"):
            await perform_ai_classification(sample_task, student_context, [], False, TEST_API_KEY)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_perform_breakdown():
    """Test breakdown returns the suggested names."""
    model = mock_chat_model(breakdown_reply("Find sources", "Outline"))

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        result = await perform_ai_breakdown("Write essay", TEST_API_KEY)

    assert result.subtasks == ["Find sources", "Outline"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_move_reasoning_never_raises():
    """Test coaching degrades to an empty insight on any failure."""
    model = mock_chat_model(RuntimeError("boom"))

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        insight = await get_ai_move_reasoning("Gym", "Do First", "Eliminate", TEST_API_KEY)

    assert insight == CoachingInsight(insight="")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_move_reasoning_missing_key_is_empty():
    """Test coaching without a key is empty rather than an error."""
    insight = await get_ai_move_reasoning("Gym", "Do First", "Eliminate", "")

    assert insight.insight == ""


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mood_suggestion_uses_do_tasks():
    """Test the mood prompt lists only active top-level 'do' tasks."""
    do_task = create_task(name="Finish lab", quadrant=Quadrant.DO)
    later = create_task(name="Plan trip", quadrant=Quadrant.SCHEDULE)
    model = mock_chat_model('{"suggestion": "Start with five minutes on the lab."}')

    with patch("lifematrix.services.ai_client.get_llm_model", return_value=model):
        result = await get_ai_mood_suggestion("tired", [do_task, later], TEST_API_KEY)

    assert result.suggestion == "Start with five minutes on the lab."
    prompt = model.ainvoke.await_args.args[0][-1].content
    assert "Finish lab" in prompt
    assert "Plan trip" not in prompt
    assert '"tired"' in prompt
