"""Recurrence engine - next due date and successor task for completed recurring tasks."""

from datetime import date, datetime, timedelta
from typing import Optional

from lifematrix.models.task import (
    Quadrant,
    RecurrenceType,
    RecurringSettings,
    Task,
    TaskStatus,
    generate_task_id,
    utc_now,
)


RECURRING_INSTANCE_REASONING = "New recurring instance. Needs classification."


def add_months(base: date, months: int) -> date:
    """
    Calendar month arithmetic with day overflow.

    The day-of-month is kept; days beyond the target month's length roll
    into the next month (2024-01-31 + 1 month = 2024-03-02).
    """
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    month_start = date(year, month, 1)
    return month_start + timedelta(days=base.day - 1)


def next_due_date(recurring: RecurringSettings, base: date) -> date:
    """Advance `base` by one recurrence step."""
    if recurring.type == RecurrenceType.DAILY:
        return base + timedelta(days=recurring.interval)
    if recurring.type == RecurrenceType.WEEKLY:
        return base + timedelta(days=7 * recurring.interval)
    if recurring.type == RecurrenceType.MONTHLY:
        return add_months(base, recurring.interval)
    raise ValueError(f"Unsupported recurrence type: {recurring.type}")


def spawn_successor(
    completed: Task,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Optional[Task]:
    """
    Build the next instance of a recurring task.

    Pure: depends only on the completed task (and the clock when it has no
    due date). Returns None for non-recurring tasks.
    """
    if completed.recurring is None:
        return None

    base = completed.due_date or today or date.today()
    return completed.model_copy(update={
        "id": generate_task_id(),
        "due_date": next_due_date(completed.recurring, base),
        "status": TaskStatus.ACTIVE,
        "quadrant": Quadrant.UNCLASSIFIED,
        "reasoning": RECURRING_INSTANCE_REASONING,
        "created_at": now or utc_now(),
    })
