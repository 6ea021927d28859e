"""
Task mutation service - the single writer of the task collection.

Every operation computes a new snapshot from the current one, commits it
before its first await, then writes the whole collection through the
persistence callable. A failed write raises PersistenceError and keeps the
committed snapshot.
"""

import asyncio
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from lifematrix.models.classification import ClassificationResult
from lifematrix.models.task import (
    NOT_CLASSIFIED_REASONING,
    Quadrant,
    RecurringSettings,
    Task,
    TaskStatus,
    generate_task_id,
    is_trashed,
    quadrant_label,
    utc_now,
)
from lifematrix.services.descendants import ChildIndex, subtree_ids
from lifematrix.services.recurrence import spawn_successor
from lifematrix.utils.errors import PersistenceError, TaskValidationError
from lifematrix.utils.logging import get_structured_logger, sanitize_message_text

logger = get_structured_logger(__name__)

PersistTasks = Callable[[list[Task]], Awaitable[None]]
CoachingHook = Callable[[Task, Quadrant, Quadrant], Awaitable[str]]

EMPTY_NAME_MESSAGE = "Task name cannot be empty."


@dataclass(frozen=True)
class MutationResult:
    """Committed snapshot plus the user-facing outcome of one operation."""
    tasks: Mapping[str, Task]
    message: str = ""
    created: tuple[str, ...] = ()
    coaching: Optional["asyncio.Task[str]"] = None


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise TaskValidationError(EMPTY_NAME_MESSAGE)
    return cleaned


class TaskMutationService:
    """Owns the task collection; readers only ever see read-only snapshots."""

    def __init__(
        self,
        persist: Optional[PersistTasks] = None,
        coach: Optional[CoachingHook] = None,
        tasks: Iterable[Task] = (),
    ):
        self._persist = persist
        self.coach = coach
        self._coaching: set = set()
        self._snapshot: Mapping[str, Task] = MappingProxyType({})
        self._index = ChildIndex(())
        self._commit(tasks)

    @property
    def tasks(self) -> Mapping[str, Task]:
        """Current snapshot, id -> Task, in collection order."""
        return self._snapshot

    @property
    def child_index(self) -> ChildIndex:
        return self._index

    def task_list(self) -> list[Task]:
        return list(self._snapshot.values())

    def get(self, task_id: str) -> Optional[Task]:
        return self._snapshot.get(task_id)

    def _commit(self, tasks: Iterable[Task]) -> Mapping[str, Task]:
        data = {task.id: task for task in tasks}
        self._snapshot = MappingProxyType(data)
        self._index = ChildIndex(data.values())
        return self._snapshot

    async def _save(self, snapshot: Mapping[str, Task], operation: str) -> None:
        if self._persist is None:
            return
        try:
            await self._persist(list(snapshot.values()))
        except Exception as e:
            logger.error(
                "Failed to save tasks",
                operation=operation,
                task_count=len(snapshot),
                error=str(e),
                error_type=e.__class__.__name__
            )
            raise PersistenceError(f"Failed to save tasks. Backend error: {e}") from e

    async def _apply(
        self,
        tasks: Iterable[Task],
        operation: str,
        message: str = "",
        created: tuple[str, ...] = (),
    ) -> MutationResult:
        snapshot = self._commit(tasks)
        logger.debug(
            "Task collection committed",
            operation=operation,
            task_count=len(snapshot),
            created_count=len(created)
        )
        await self._save(snapshot, operation)
        return MutationResult(tasks=snapshot, message=message, created=created)

    def _with_status(self, ids: set[str], status: TaskStatus) -> list[Task]:
        return [
            task.model_copy(update={"status": status}) if task.id in ids else task
            for task in self._snapshot.values()
        ]

    def replace_all(self, tasks: Iterable[Task]) -> Mapping[str, Task]:
        """Install a remotely delivered collection. Does not write back."""
        return self._commit(tasks)

    async def add_task(self, name: str, due_date: Optional[date] = None) -> MutationResult:
        """Create a new unclassified top-level task."""
        task = Task(
            id=generate_task_id(),
            name=_clean_name(name),
            due_date=due_date,
            quadrant=Quadrant.UNCLASSIFIED,
            reasoning=NOT_CLASSIFIED_REASONING,
            created_at=utc_now(),
            status=TaskStatus.ACTIVE,
            recurring=None,
            parent_id=None,
        )
        logger.info(
            "Task added",
            task_id=task.id,
            task_name=sanitize_message_text(task.name, max_length=100)
        )
        return await self._apply([*self._snapshot.values(), task], "add_task", created=(task.id,))

    async def add_subtasks(self, names: Iterable[str], parent_id: str) -> MutationResult:
        """Create one sub-task per name under an existing parent, inheriting its quadrant."""
        parent = self._snapshot.get(parent_id)
        if parent is None:
            raise TaskValidationError(f"Parent task {parent_id} not found.")

        now = utc_now()
        subtasks = [
            Task(
                id=generate_task_id(),
                name=name.strip(),
                due_date=None,
                quadrant=parent.quadrant,
                reasoning=f'Sub-task for "{parent.name}".',
                created_at=now,
                status=TaskStatus.ACTIVE,
                recurring=None,
                parent_id=parent.id,
            )
            for name in names
            if name and name.strip()
        ]
        return await self._apply(
            [*self._snapshot.values(), *subtasks],
            "add_subtasks",
            message=f"{len(subtasks)} sub-tasks added.",
            created=tuple(t.id for t in subtasks),
        )

    async def change_status(
        self,
        task_id: str,
        new_status: TaskStatus,
        today: Optional[date] = None,
    ) -> MutationResult:
        """
        Set the status of a task and its whole descendant closure.

        Completing a recurring task appends its successor. An unknown id
        leaves the collection unchanged but is still persisted.
        """
        new_status = TaskStatus(new_status)
        task = self._snapshot.get(task_id)
        if task is None:
            logger.warning("Status change for unknown task", task_id=task_id, status=new_status.value)
            return await self._apply(self._snapshot.values(), "change_status")

        ids = subtree_ids(task_id, self._index)
        updated = self._with_status(ids, new_status)

        message = ""
        created: tuple[str, ...] = ()
        if new_status == TaskStatus.COMPLETED:
            message = f'Task "{task.name}" completed!'
            successor = spawn_successor(task.model_copy(update={"status": new_status}), today=today)
            if successor is not None:
                updated.append(successor)
                created = (successor.id,)
                message += " Next instance created."
                logger.info(
                    "Recurring successor created",
                    task_id=task_id,
                    successor_id=successor.id,
                    next_due_date=successor.due_date.isoformat() if successor.due_date else None
                )

        logger.info(
            "Task status changed",
            task_id=task_id,
            status=new_status.value,
            affected_count=len(ids)
        )
        return await self._apply(updated, "change_status", message=message, created=created)

    async def recover_from_trash(self, task_id: str) -> MutationResult:
        """Restore a task and every descendant to active, whatever their prior status."""
        task = self._snapshot.get(task_id)
        ids = subtree_ids(task_id, self._index) if task is not None else set()
        message = f'Task "{task.name}" recovered.' if task is not None else ""
        return await self._apply(
            self._with_status(ids, TaskStatus.ACTIVE),
            "recover_from_trash",
            message=message,
        )

    async def permanently_delete(self, task_id: str) -> MutationResult:
        """Remove a task and its descendant closure. Callers confirm with the user first."""
        task = self._snapshot.get(task_id)
        ids = subtree_ids(task_id, self._index) if task is not None else set()
        remaining = [t for t in self._snapshot.values() if t.id not in ids]
        logger.info("Tasks permanently deleted", task_id=task_id, removed_count=len(ids))
        message = f'Task "{task.name}" permanently deleted.' if task is not None else ""
        return await self._apply(remaining, "permanently_delete", message=message)

    async def empty_trash(self) -> MutationResult:
        """Remove every trashed task."""
        remaining = [t for t in self._snapshot.values() if not is_trashed(t)]
        logger.info("Trash emptied", removed_count=len(self._snapshot) - len(remaining))
        return await self._apply(remaining, "empty_trash", message="Trash emptied.")

    async def update_details(
        self,
        task_id: str,
        name: str,
        due_date: Optional[Union[date, str]],
        recurring: Optional[Union[RecurringSettings, dict]],
    ) -> MutationResult:
        """Overwrite name, due date and recurrence only."""
        cleaned = _clean_name(name)
        task = self._snapshot.get(task_id)
        if task is None:
            return await self._apply(self._snapshot.values(), "update_details")

        document = task.model_dump(by_alias=True)
        document.update({"name": cleaned, "dueDate": due_date, "recurring": recurring})
        try:
            revised = Task.model_validate(document)
        except ValidationError as e:
            raise TaskValidationError(f"Invalid task details: {e}") from e

        updated = [revised if t.id == task_id else t for t in self._snapshot.values()]
        return await self._apply(updated, "update_details", message=f'Task "{task.name}" updated.')

    async def move_quadrant(
        self,
        task_id: str,
        from_quadrant: Quadrant,
        to_quadrant: Quadrant,
    ) -> MutationResult:
        """
        Manual move: replaces the reasoning and writes the collection.

        The coaching hook runs in the background; result.coaching resolves
        to its insight without holding up the move.
        """
        task = self._snapshot.get(task_id)
        if task is None:
            return MutationResult(tasks=self._snapshot)

        to_quadrant = Quadrant(to_quadrant)
        reasoning = f"Manually moved from {quadrant_label(from_quadrant)} to {quadrant_label(to_quadrant)}."
        updated = [
            t.model_copy(update={"quadrant": to_quadrant, "reasoning": reasoning}) if t.id == task_id else t
            for t in self._snapshot.values()
        ]
        result = await self._apply(updated, "move_quadrant")

        coaching = None
        if self.coach is not None:
            coaching = asyncio.ensure_future(self._run_coach(task, Quadrant(from_quadrant), to_quadrant))
            self._coaching.add(coaching)
            coaching.add_done_callback(self._coaching.discard)
        return MutationResult(tasks=result.tasks, coaching=coaching)

    async def _run_coach(self, task: Task, from_quadrant: Quadrant, to_quadrant: Quadrant) -> str:
        try:
            return await self.coach(task, from_quadrant, to_quadrant) or ""
        except Exception as e:
            logger.warning(
                "Coaching insight failed",
                task_id=task.id,
                error=str(e),
                error_type=e.__class__.__name__
            )
            return ""

    async def apply_classifications(
        self,
        updates: Mapping[str, ClassificationResult],
        failure_notes: Optional[Mapping[str, str]] = None,
        message: str = "",
    ) -> MutationResult:
        """
        Merge classifier results into the current snapshot in one commit.

        Only tasks still present are touched, and only their classification
        fields; a suggested date replaces the due date.
        """
        failure_notes = failure_notes or {}
        merged = []
        for task in self._snapshot.values():
            result = updates.get(task.id)
            if result is not None:
                changes = {
                    "quadrant": result.quadrant_enum,
                    "reasoning": result.reasoning,
                }
                if result.suggested_date is not None:
                    changes["due_date"] = result.suggested_date
                if result.date_reasoning is not None:
                    changes["date_reasoning"] = result.date_reasoning
                if result.scheduling_hint is not None:
                    changes["scheduling_hint"] = result.scheduling_hint
                task = task.model_copy(update=changes)
            elif task.id in failure_notes:
                task = task.model_copy(update={"reasoning": failure_notes[task.id]})
            merged.append(task)

        return await self._apply(merged, "apply_classifications", message=message)

    async def annotate_failures(self, notes: Mapping[str, str], message: str = "") -> MutationResult:
        """Overwrite the reasoning of tasks still present with a failure diagnostic."""
        return await self.apply_classifications({}, failure_notes=notes, message=message)
