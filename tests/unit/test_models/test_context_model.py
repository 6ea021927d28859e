"""Tests for StudentContext, AppSettings and the backup payload."""

import pytest

from lifematrix.models.backup import BackupPayload
from lifematrix.models.context import (
    DEFAULT_SETTINGS,
    DEFAULT_STUDENT_CONTEXT,
    AppSettings,
    StudentContext,
)


@pytest.mark.unit
def test_default_context_is_empty():
    """Test default context fields are empty strings."""
    assert DEFAULT_STUDENT_CONTEXT.exams.text == ""
    assert DEFAULT_STUDENT_CONTEXT.assignments.date == ""
    assert DEFAULT_STUDENT_CONTEXT.goals == ""
    assert DEFAULT_STUDENT_CONTEXT.open_context == ""


@pytest.mark.unit
def test_default_settings():
    """Test coaching is enabled and no key is configured by default."""
    assert DEFAULT_SETTINGS.enable_coaching is True
    assert DEFAULT_SETTINGS.api_key == ""
    assert not DEFAULT_SETTINGS.has_api_key


@pytest.mark.unit
def test_context_wire_names(student_context):
    """Test context round-trips through the camelCase document."""
    document = student_context.to_document()

    assert document["openContext"] == "Part-time job on weekends"
    assert document["exams"] == {"text": "Calculus midterm", "date": "2024-01-20"}
    assert StudentContext.model_validate(document) == student_context


@pytest.mark.unit
def test_settings_wire_names():
    """Test settings accept the camelCase keys."""
    settings = AppSettings.model_validate({"enableCoaching": False, "apiKey": "secret-key"})

    assert settings.enable_coaching is False
    assert settings.has_api_key
    assert settings.to_document() == {"enableCoaching": False, "apiKey": "secret-key"}


@pytest.mark.unit
def test_whitespace_key_is_not_configured():
    """Test a whitespace-only key counts as missing."""
    assert not AppSettings(api_key="   ").has_api_key


@pytest.mark.unit
def test_backup_payload_document(sample_task, student_context, settings_with_key):
    """Test backup document uses the export key names."""
    payload = BackupPayload(tasks=[sample_task], student_context=student_context, settings=settings_with_key)

    document = payload.to_document()

    assert set(document) == {"tasks", "studentContext", "settings"}
    assert document["tasks"][0]["id"] == sample_task.id
