"""
Classification orchestrator - batches unclassified tasks through the AI client
and merges the results back through the mutation service.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from lifematrix.models.context import AppSettings, StudentContext
from lifematrix.models.task import Quadrant, Task, quadrant_label, unclassified_tasks
from lifematrix.services.ai_client import (
    MISSING_KEY_MESSAGE,
    get_ai_mood_suggestion,
    get_ai_move_reasoning,
    perform_ai_breakdown,
    perform_ai_classification,
)
from lifematrix.services.task_mutations import MutationResult, TaskMutationService
from lifematrix.utils.errors import CredentialMissingError, CredentialRequiredError
from lifematrix.utils.logging import get_structured_logger, log_timing, sanitize_message_text

logger = get_structured_logger(__name__)

NOTHING_TO_DO = "nothing_to_do"
COMPLETED = "completed"

NOTHING_TO_DO_MESSAGE = "No unclassified tasks to process."
ATTEMPTED_MESSAGE = "AI classification attempted."

FAILURE_NOTE_LENGTH = 100


@dataclass(frozen=True)
class ClassificationFailure:
    """One task whose classification failed non-fatally."""
    task_id: str
    task_name: str
    error: str


@dataclass(frozen=True)
class BatchOutcome:
    """Result of classify_batch; classified_count drives the user message."""
    status: str
    classified_count: int = 0
    failures: list[ClassificationFailure] = field(default_factory=list)
    message: str = ""
    tasks: Optional[Mapping[str, Task]] = None


class ClassificationOrchestrator:
    """Runs AI classification, breakdown, coaching and mood requests for one user."""

    def __init__(
        self,
        mutations: TaskMutationService,
        get_context: Callable[[], StudentContext],
        get_settings: Callable[[], AppSettings],
    ):
        self._mutations = mutations
        self._get_context = get_context
        self._get_settings = get_settings

    def _require_api_key(self) -> str:
        settings = self._get_settings()
        if not settings.has_api_key:
            raise CredentialMissingError(MISSING_KEY_MESSAGE)
        return settings.api_key

    async def _classify_isolated(self, task, context, all_tasks, api_key):
        try:
            result = await perform_ai_classification(
                task, context, all_tasks, task.recurring is not None, api_key
            )
            return task, result, None
        except CredentialRequiredError:
            raise
        except Exception as e:
            logger.warning(
                "Task classification failed",
                task_id=task.id,
                task_name=sanitize_message_text(task.name, max_length=100),
                error=str(e),
                error_type=e.__class__.__name__
            )
            return task, None, e

    async def classify_batch(self) -> BatchOutcome:
        """
        Classify every active, top-level, unclassified task concurrently.

        Per-task failures become a diagnostic reasoning on that task. A
        rejected credential cancels the outstanding requests and propagates
        without mutating anything.
        """
        snapshot = self._mutations.task_list()
        pending = unclassified_tasks(snapshot)
        if not pending:
            logger.info("No unclassified tasks to process")
            return BatchOutcome(status=NOTHING_TO_DO, message=NOTHING_TO_DO_MESSAGE)

        api_key = self._require_api_key()
        context = self._get_context()

        requests = [
            asyncio.ensure_future(self._classify_isolated(task, context, snapshot, api_key))
            for task in pending
        ]
        try:
            with log_timing("classify_batch", logger=logger, task_count=len(pending)):
                outcomes = await asyncio.gather(*requests)
        except CredentialRequiredError:
            for request in requests:
                request.cancel()
            logger.warning("Batch classification aborted: credential rejected", task_count=len(pending))
            raise

        updates = {}
        notes = {}
        failures = []
        for task, result, error in outcomes:
            if error is None:
                updates[task.id] = result
            else:
                notes[task.id] = f"AI classification failed: {str(error)[:FAILURE_NOTE_LENGTH]}"
                failures.append(ClassificationFailure(task.id, task.name, str(error)))

        message = f"{len(updates)} task(s) classified by AI." if updates else ATTEMPTED_MESSAGE
        merged = await self._mutations.apply_classifications(updates, failure_notes=notes, message=message)

        logger.info(
            "Batch classification completed",
            task_count=len(pending),
            classified_count=len(updates),
            failure_count=len(failures)
        )
        return BatchOutcome(
            status=COMPLETED,
            classified_count=len(updates),
            failures=failures,
            message=message,
            tasks=merged.tasks,
        )

    async def reclassify_one(self, task_id: str) -> MutationResult:
        """Classify a single task again; a non-fatal failure overwrites its reasoning."""
        task = self._mutations.get(task_id)
        if task is None:
            return MutationResult(tasks=self._mutations.tasks)

        api_key = self._require_api_key()
        try:
            result = await perform_ai_classification(
                task,
                self._get_context(),
                self._mutations.task_list(),
                task.recurring is not None,
                api_key,
            )
        except CredentialRequiredError:
            raise
        except Exception as e:
            logger.warning(
                "Task re-classification failed",
                task_id=task_id,
                error=str(e),
                error_type=e.__class__.__name__
            )
            return await self._mutations.annotate_failures(
                {task_id: f"AI re-classification failed: {str(e)[:FAILURE_NOTE_LENGTH]}"},
                message=f'AI re-classification failed for "{task.name}": {e}',
            )

        return await self._mutations.apply_classifications(
            {task_id: result},
            message=f'Task "{task.name}" re-classified by AI.',
        )

    async def breakdown(self, task: Task) -> list[str]:
        """Suggested sub-task names; creating them is a separate, confirmed step."""
        api_key = self._require_api_key()
        result = await perform_ai_breakdown(task.name, api_key)
        logger.info("Breakdown suggested", task_id=task.id, subtask_count=len(result.subtasks))
        return list(result.subtasks)

    async def move_coaching_insight(
        self,
        task: Task,
        from_quadrant: Quadrant,
        to_quadrant: Quadrant,
    ) -> str:
        """Best-effort coaching text for a manual move; empty when disabled or unavailable."""
        settings = self._get_settings()
        if not settings.enable_coaching or not settings.has_api_key:
            return ""
        response = await get_ai_move_reasoning(
            task.name,
            quadrant_label(from_quadrant),
            quadrant_label(to_quadrant),
            settings.api_key,
        )
        return response.insight

    async def mood_suggestion(self, mood: Optional[str] = None) -> str:
        api_key = self._require_api_key()
        if mood is None:
            mood = self._get_context().mood
        response = await get_ai_mood_suggestion(mood, self._mutations.task_list(), api_key)
        return response.suggestion
