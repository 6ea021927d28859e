"""Backup document model for export/import."""

from pydantic import BaseModel, ConfigDict, Field

from lifematrix.models.context import AppSettings, StudentContext
from lifematrix.models.task import Task


class BackupPayload(BaseModel):
    """Full export: {tasks, studentContext, settings}."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tasks: list[Task] = Field(..., description="Whole task collection, in collection order")
    student_context: StudentContext = Field(..., alias="studentContext", description="Student context record")
    settings: AppSettings = Field(..., description="App settings record")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
