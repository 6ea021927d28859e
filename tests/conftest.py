"""Shared pytest fixtures and configuration."""

import os
import pytest
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LLM_PROVIDER", "anthropic")
os.environ.setdefault("LLM_MODEL", "claude-sonnet-4-20250514")

from lifematrix.models.context import AppSettings, DatedNote, StudentContext
from lifematrix.models.task import Quadrant, RecurringSettings, RecurrenceType, Task, TaskStatus
from lifematrix.services.task_mutations import TaskMutationService
from tests.fixtures.ai_responses import TEST_API_KEY
from tests.utils.fakes import InMemoryDocumentStore


@pytest.fixture
def created_at():
    """Fixed creation timestamp."""
    return datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_task(created_at):
    """Active, unclassified top-level task."""
    return Task(
        id="task-1",
        name="Write lab report",
        due_date=date(2024, 1, 10),
        quadrant=Quadrant.UNCLASSIFIED,
        reasoning="Not classified yet.",
        created_at=created_at,
        status=TaskStatus.ACTIVE,
    )


@pytest.fixture
def weekly_task(created_at):
    """Recurring task: every 2 weeks from 2024-01-01."""
    return Task(
        id="weekly-1",
        name="Water the plants",
        due_date=date(2024, 1, 1),
        quadrant=Quadrant.SCHEDULE,
        reasoning="Keeps them alive.",
        created_at=created_at,
        recurring=RecurringSettings(type=RecurrenceType.WEEKLY, interval=2),
    )


@pytest.fixture
def student_context():
    """Populated student context."""
    return StudentContext(
        exams=DatedNote(text="Calculus midterm", date="2024-01-20"),
        assignments=DatedNote(text="History essay", date="2024-01-15"),
        goals="Graduate with honours",
        mood="Focused",
        open_context="Part-time job on weekends",
    )


@pytest.fixture
def settings_with_key():
    """Settings with coaching on and an API key."""
    return AppSettings(enable_coaching=True, api_key=TEST_API_KEY)


@pytest.fixture
def persist_mock():
    """Async persistence callable that always succeeds."""
    return AsyncMock(return_value=None)


@pytest.fixture
def mutation_service(persist_mock):
    """Empty mutation service wired to persist_mock."""
    return TaskMutationService(persist=persist_mock)


@pytest.fixture
def document_store():
    """In-memory document store with realtime-style delivery."""
    return InMemoryDocumentStore()
