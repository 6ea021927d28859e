"""Export/import of the full per-user data set as one JSON document."""

import json
from datetime import date
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from lifematrix.models.backup import BackupPayload
from lifematrix.models.context import AppSettings, StudentContext
from lifematrix.models.task import Task
from lifematrix.utils.errors import ImportValidationError
from lifematrix.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

REQUIRED_KEYS = ("tasks", "studentContext", "settings")

MISSING_FIELDS_MESSAGE = "Invalid import file format. Required fields missing: tasks, studentContext, or settings."
TASKS_NOT_ARRAY_MESSAGE = "Imported tasks data is not in the correct format (should be an array)."


def export_backup(
    tasks: Iterable[Task],
    context: StudentContext,
    settings: AppSettings,
) -> BackupPayload:
    return BackupPayload(tasks=list(tasks), student_context=context, settings=settings)


def backup_to_json(payload: BackupPayload) -> str:
    """Render the export document with two-space indentation."""
    return json.dumps(payload.to_document(), indent=2)


def backup_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"ai_life_matrix_backup_{today.isoformat()}.json"


def parse_backup(raw: Union[str, bytes, dict]) -> BackupPayload:
    """
    Validate an import document completely.

    Raises ImportValidationError for non-JSON text, missing top-level keys,
    a non-array tasks value, or any record that fails validation. Nothing
    is written by this function.
    """
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ImportValidationError(f"Import file is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict) or any(key not in data or data[key] is None for key in REQUIRED_KEYS):
        raise ImportValidationError(MISSING_FIELDS_MESSAGE)

    if not isinstance(data["tasks"], list):
        raise ImportValidationError(TASKS_NOT_ARRAY_MESSAGE)

    try:
        payload = BackupPayload.model_validate(data)
    except ValidationError as e:
        raise ImportValidationError(f"Imported data failed validation: {e.error_count()} invalid field(s). {e}") from e

    logger.info("Backup parsed", task_count=len(payload.tasks))
    return payload
