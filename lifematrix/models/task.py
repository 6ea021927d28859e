"""Task models - the Eisenhower matrix task record and its hierarchy helpers."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator
from ulid import ULID


class Quadrant(str, Enum):
    """Eisenhower quadrants plus the pre-classification placeholder."""
    DO = "do"
    SCHEDULE = "schedule"
    DELEGATE = "delegate"
    DELETE = "delete"
    UNCLASSIFIED = "unclassified"


QUADRANT_LABELS = {
    Quadrant.DO: "Do First",
    Quadrant.SCHEDULE: "Schedule",
    Quadrant.DELEGATE: "Delegate",
    Quadrant.DELETE: "Eliminate",
    Quadrant.UNCLASSIFIED: "Unclassified",
}


def quadrant_label(quadrant: Quadrant | str) -> str:
    """Display label for a quadrant, falling back to the raw value."""
    try:
        return QUADRANT_LABELS[Quadrant(quadrant)]
    except ValueError:
        return str(quadrant)


class TaskStatus(str, Enum):
    """Task lifecycle status. Completed and trashed can both revert to active."""
    ACTIVE = "active"
    COMPLETED = "completed"
    TRASHED = "trashed"


class RecurrenceType(str, Enum):
    """Recurrence units."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RecurringSettings(BaseModel):
    """Recurrence descriptor: every `interval` units of `type`."""
    model_config = ConfigDict(frozen=True)

    type: RecurrenceType = Field(..., description="daily, weekly or monthly")
    interval: PositiveInt = Field(1, description="Number of units between occurrences")


NOT_CLASSIFIED_REASONING = "Not classified yet."


class Task(BaseModel):
    """Task record. Wire format uses the camelCase aliases."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Client-generated id, immutable")
    name: str = Field(..., min_length=1, description="Display name")
    due_date: Optional[date] = Field(None, alias="dueDate", description="Calendar due date, None when unscheduled")
    quadrant: Quadrant = Field(default=Quadrant.UNCLASSIFIED, description="Matrix quadrant")
    reasoning: Optional[str] = Field(None, description="Classifier or system note")
    date_reasoning: Optional[str] = Field(None, alias="dateReasoning", description="Why the suggested date was chosen")
    scheduling_hint: Optional[str] = Field(None, alias="schedulingHint", description="Hint for busy recurring dates")
    created_at: datetime = Field(..., alias="createdAt", description="Creation timestamp, used for ordering")
    status: TaskStatus = Field(default=TaskStatus.ACTIVE, description="active, completed or trashed")
    recurring: Optional[RecurringSettings] = Field(None, description="Recurrence descriptor or None")
    parent_id: Optional[str] = Field(None, alias="parentId", description="Owning task id for sub-tasks")

    @field_validator("due_date", mode="before")
    @classmethod
    def _blank_due_date(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("recurring", mode="before")
    @classmethod
    def _normalize_recurring(cls, value: Any) -> Any:
        if isinstance(value, dict) and value.get("type") in (None, "", "none"):
            return None
        return value

    @field_validator("parent_id", mode="before")
    @classmethod
    def _blank_parent(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_document(self) -> dict:
        """Serialize to the persisted/exported camelCase shape."""
        return self.model_dump(mode="json", by_alias=True)


def generate_task_id() -> str:
    """Generate a task ID: millisecond timestamp plus random suffix (ULID)."""
    return str(ULID())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_top_level(task: Task) -> bool:
    return task.parent_id is None


def is_active(task: Task) -> bool:
    return task.status == TaskStatus.ACTIVE


def is_completed(task: Task) -> bool:
    return task.status == TaskStatus.COMPLETED


def is_trashed(task: Task) -> bool:
    return task.status == TaskStatus.TRASHED


def sort_by_created(tasks: Iterable[Task], newest_first: bool = False) -> list[Task]:
    """Stable sort on creation time; ties keep collection order."""
    return sorted(tasks, key=lambda t: t.created_at, reverse=newest_first)


def unclassified_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Active top-level tasks awaiting classification, oldest first."""
    return quadrant_tasks(tasks, Quadrant.UNCLASSIFIED)


def quadrant_tasks(tasks: Iterable[Task], quadrant: Quadrant) -> list[Task]:
    """Active top-level tasks of one quadrant, oldest first."""
    return sort_by_created(
        t for t in tasks
        if is_active(t) and is_top_level(t) and t.quadrant == quadrant
    )


def completed_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Completed top-level tasks, newest first."""
    return sort_by_created((t for t in tasks if is_completed(t) and is_top_level(t)), newest_first=True)


def trashed_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Trashed top-level tasks, newest first."""
    return sort_by_created((t for t in tasks if is_trashed(t) and is_top_level(t)), newest_first=True)


def visible_subtasks(task: Task, tasks: Iterable[Task]) -> list[Task]:
    """Direct children shown under a task: those sharing its status, oldest first."""
    return sort_by_created(
        t for t in tasks if t.parent_id == task.id and t.status == task.status
    )
