"""LLM client for task classification, breakdown, coaching and mood suggestions using LangChain."""

import json
import os
import re
from dataclasses import dataclass
from datetime import date
from typing import Generic, Iterable, Optional, TypeVar, Union

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

from lifematrix.models.classification import (
    CLASSIFIABLE_QUADRANTS,
    BreakdownResult,
    ClassificationResult,
    CoachingInsight,
    MoodSuggestion,
)
from lifematrix.models.context import StudentContext
from lifematrix.models.task import Quadrant, Task, is_active, is_top_level
from lifematrix.utils.errors import (
    AIRequestError,
    AIResponseError,
    CredentialMissingError,
    CredentialRejectedError,
)
from lifematrix.utils.logging import (
    get_structured_logger,
    log_timing,
    mask_api_key,
    sanitize_message_text,
)

logger = get_structured_logger(__name__)

DEFAULT_LLM_PROVIDER = "anthropic"
DEFAULT_LLM_MODEL = "claude-sonnet-4-20250514"

MISSING_KEY_MESSAGE = "AI API key is not configured. Please add your API key in Settings."
REJECTED_KEY_MESSAGE = "The AI provider rejected your API key. Please update your API key in Settings."

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class ParsedResponse(Generic[T]):
    """Structurally valid AI payload."""
    value: T


@dataclass(frozen=True)
class ResponseParseError:
    """AI payload that failed structural parsing; keeps the raw text for diagnostics."""
    raw_text: str
    reason: str

    def diagnostic(self) -> str:
        return f"{self.reason}. Response: {self.raw_text[:100]}..."


AIResponse = Union[ParsedResponse[T], ResponseParseError]

_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove one surrounding Markdown code fence (```json ... ```) if present."""
    stripped = (text or "").strip()
    match = _FENCE_RE.match(stripped)
    if match and match.group(2):
        return match.group(2).strip()
    return stripped


def _validation_reason(error: ValidationError, data: dict) -> str:
    for detail in error.errors():
        if detail.get("loc") and detail["loc"][0] == "quadrant" and "quadrant" in data:
            valid = ", ".join(f'"{q.value}"' for q in CLASSIFIABLE_QUADRANTS)
            return f'AI returned an invalid quadrant: "{data["quadrant"]}". Valid quadrants are {valid}'
    fields = ", ".join(".".join(str(p) for p in d.get("loc", ())) or "<root>" for d in error.errors())
    return f"AI response did not match the expected structure (fields: {fields})"


def parse_ai_response(text: str, model: type[T]) -> AIResponse:
    """
    Parse raw AI text into `model`.

    Returns ParsedResponse on success, ResponseParseError for invalid JSON,
    non-object payloads, schema mismatches or out-of-range quadrants.
    """
    payload_text = strip_code_fence(text)
    try:
        data = json.loads(payload_text)
    except json.JSONDecodeError:
        return ResponseParseError(raw_text=text or "", reason="AI returned an invalid JSON format")

    if not isinstance(data, dict):
        return ResponseParseError(raw_text=text or "", reason="AI returned a JSON value that is not an object")

    try:
        return ParsedResponse(model.model_validate(data))
    except ValidationError as e:
        return ResponseParseError(raw_text=text or "", reason=_validation_reason(e, data))


def unwrap_response(result: AIResponse, operation: str) -> T:
    """Return the parsed payload or raise AIResponseError with the diagnostic."""
    if isinstance(result, ResponseParseError):
        logger.warning(
            "AI response failed structural parsing",
            operation=operation,
            reason=result.reason,
            response_preview=sanitize_message_text(result.raw_text, max_length=100)
        )
        raise AIResponseError(result.diagnostic())
    return result.value


def get_llm_model(api_key: Optional[str]):
    """Get the configured chat model, authenticated with the user's API key."""
    if not api_key or not api_key.strip():
        raise CredentialMissingError(MISSING_KEY_MESSAGE)

    provider = os.environ.get("LLM_PROVIDER", DEFAULT_LLM_PROVIDER).lower()
    model_name = os.environ.get("LLM_MODEL", DEFAULT_LLM_MODEL)

    logger.debug(
        "Getting LLM model",
        llm_provider=provider,
        llm_model=model_name,
        api_key=mask_api_key(api_key)
    )

    if provider == "anthropic":
        return ChatAnthropic(model=model_name, api_key=api_key)
    elif provider == "openai":
        return ChatOpenAI(model=model_name, api_key=api_key)
    else:
        raise AIRequestError(f"Unsupported LLM provider: {provider}")


_CREDENTIAL_ERROR_NAMES = {
    "AuthenticationError",
    "PermissionDeniedError",
    "UnauthorizedError",
}

_CREDENTIAL_ERROR_PHRASES = (
    "api key not valid",
    "invalid api key",
    "invalid x-api-key",
    "incorrect api key",
)


def is_credential_error(exc: BaseException) -> bool:
    """True when the provider rejected the credential (checked along the cause chain)."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, CredentialRejectedError):
            return True
        if current.__class__.__name__ in _CREDENTIAL_ERROR_NAMES:
            return True
        if getattr(current, "status_code", None) in (401, 403):
            return True
        message = str(current).lower()
        if any(phrase in message for phrase in _CREDENTIAL_ERROR_PHRASES):
            return True
        current = current.__cause__
    return False


def _response_text(response) -> str:
    content = response.content if hasattr(response, "content") else response
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content)


async def invoke_llm(
    user_prompt: str,
    api_key: Optional[str],
    operation: str,
    system_prompt: Optional[str] = None,
) -> str:
    """Send one prompt and return the raw reply text."""
    model = get_llm_model(api_key)
    messages = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=user_prompt))

    try:
        with log_timing(operation, logger=logger, prompt_size_chars=len(user_prompt)):
            response = await model.ainvoke(messages)
    except Exception as e:
        if is_credential_error(e):
            logger.warning(
                "LLM credential rejected",
                operation=operation,
                error_type=e.__class__.__name__
            )
            raise CredentialRejectedError(REJECTED_KEY_MESSAGE) from e
        logger.error(
            "LLM request failed",
            operation=operation,
            error=sanitize_message_text(str(e), max_length=200),
            error_type=e.__class__.__name__
        )
        raise AIRequestError(f"AI request failed: {e}") from e

    return _response_text(response)


def _or_na(value: Optional[str]) -> str:
    return value if value else "N/A"


def build_classification_prompt(
    task: Task,
    context: StudentContext,
    all_tasks: Iterable[Task],
    is_recurring_instance: bool,
    today: Optional[date] = None,
) -> dict:
    """Build system and user prompts for one task classification."""
    today = today or date.today()

    system_prompt = f"""You are an expert assistant specializing in student productivity using the Eisenhower Matrix. Today's Date: {today.isoformat()}.
1. Classify tasks into 'do', 'schedule', 'delegate', or 'delete'. These are the only valid strings for the "quadrant" field.
2. If classifying into 'do' or 'schedule', ALSO suggest a realistic due date (in 'YYYY-MM-DD' format) and provide a brief "dateReasoning".
3. If the task is a new recurring task instance, check the user's schedule (provided in context) and add a 'schedulingHint' if the new due date looks busy.
4. Respond ONLY with a valid JSON object with: "quadrant" (string: "do", "schedule", "delegate", or "delete"), "reasoning" (string, max 20 words), "suggestedDate" (string, 'YYYY-MM-DD', optional), "dateReasoning" (string, optional), and "schedulingHint" (string, optional). Ensure the quadrant value is one of the four specified."""

    planned = [
        f"{t.name} (Due: {t.due_date.isoformat() if t.due_date else 'N/A'})"
        for t in all_tasks
        if t.quadrant in (Quadrant.DO, Quadrant.SCHEDULE) and is_top_level(t) and is_active(t)
    ]

    user_prompt = (
        "Context:\n"
        f"- Exams: {_or_na(context.exams.text)} (Due: {_or_na(context.exams.date)})\n"
        f"- Assignments: {_or_na(context.assignments.text)} (Due: {_or_na(context.assignments.date)})\n"
        f"- Goals: {_or_na(context.goals)}\n"
        f"- Mood: {_or_na(context.mood)}\n"
        f"- Other: {_or_na(context.open_context)}\n"
        f"- Current 'Do' and 'Schedule' tasks: {', '.join(planned) or 'None'}\n\n"
        f'Task: "{task.name}" (Current Due: {task.due_date.isoformat() if task.due_date else "N/A"})'
    )
    if is_recurring_instance:
        user_prompt += " - This is a newly generated recurring task instance."

    return {"system": system_prompt, "user": user_prompt}


async def perform_ai_classification(
    task: Task,
    context: StudentContext,
    all_tasks: Iterable[Task],
    is_recurring_instance: bool,
    api_key: Optional[str],
    today: Optional[date] = None,
) -> ClassificationResult:
    """Classify one task into a matrix quadrant."""
    prompt = build_classification_prompt(task, context, all_tasks, is_recurring_instance, today)

    logger.info(
        "LLM classification request started",
        task_id=task.id,
        task_name=sanitize_message_text(task.name, max_length=100),
        is_recurring_instance=is_recurring_instance
    )

    text = await invoke_llm(prompt["user"], api_key, "ai_classification", system_prompt=prompt["system"])
    result = unwrap_response(parse_ai_response(text, ClassificationResult), "ai_classification")

    logger.info(
        "LLM classification response received",
        task_id=task.id,
        quadrant=result.quadrant,
        has_suggested_date=result.suggested_date is not None,
        has_scheduling_hint=bool(result.scheduling_hint)
    )
    return result


async def perform_ai_breakdown(task_name: str, api_key: Optional[str]) -> BreakdownResult:
    """Ask for a list of smaller actionable sub-tasks."""
    prompt = (
        f'Break down the following complex task into a list of smaller, actionable sub-tasks. Task: "{task_name}". '
        'Respond ONLY with a valid JSON object like: {"subtasks": ["subtask 1", "subtask 2", "subtask 3"]}. '
        "Keep subtasks concise."
    )
    text = await invoke_llm(prompt, api_key, "ai_breakdown")
    result = unwrap_response(parse_ai_response(text, BreakdownResult), "ai_breakdown")
    logger.info("LLM breakdown received", subtask_count=len(result.subtasks))
    return result


async def get_ai_move_reasoning(
    task_name: str,
    old_quadrant_label: str,
    new_quadrant_label: str,
    api_key: Optional[str],
) -> CoachingInsight:
    """Coaching insight for a manual move. Never raises; empty insight on failure."""
    prompt = (
        f'A user moved a task "{task_name}" from the "{old_quadrant_label}" quadrant to the "{new_quadrant_label}" quadrant. '
        "Provide a brief, one-sentence coaching insight or reflective question about this move (max 25 words). "
        'Respond ONLY with a valid JSON object: {"insight": "Your insightful comment here."}'
    )
    try:
        text = await invoke_llm(prompt, api_key, "ai_coaching")
        return unwrap_response(parse_ai_response(text, CoachingInsight), "ai_coaching")
    except Exception as e:
        logger.warning(
            "AI coaching failed",
            error=sanitize_message_text(str(e), max_length=200),
            error_type=e.__class__.__name__
        )
        return CoachingInsight(insight="")


async def get_ai_mood_suggestion(
    mood: str,
    tasks: Iterable[Task],
    api_key: Optional[str],
) -> MoodSuggestion:
    """Short encouraging tip from the mood and active top-level 'do' tasks."""
    do_now = ", ".join(
        t.name for t in tasks
        if is_active(t) and t.quadrant == Quadrant.DO and is_top_level(t)
    )
    prompt = (
        f'A user is feeling "{mood}". Their current high-priority tasks are: {do_now or "None"}. '
        "Provide one short, actionable, and encouraging suggestion (max 30 words) to help them get started or manage their day. "
        'Frame it as a friendly tip. Respond ONLY with a valid JSON object: {"suggestion": "Your suggestion here."}'
    )
    text = await invoke_llm(prompt, api_key, "ai_mood_suggestion")
    return unwrap_response(parse_ai_response(text, MoodSuggestion), "ai_mood_suggestion")
