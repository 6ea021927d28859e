"""AI boundary payloads: classification, breakdown, coaching and mood suggestion."""

from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lifematrix.models.task import Quadrant


CLASSIFIABLE_QUADRANTS = (Quadrant.DO, Quadrant.SCHEDULE, Quadrant.DELEGATE, Quadrant.DELETE)


class ClassificationResult(BaseModel):
    """Classifier reply. Only the four matrix quadrants are valid."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    quadrant: Literal["do", "schedule", "delegate", "delete"] = Field(
        ...,
        description="One of do, schedule, delegate, delete"
    )
    reasoning: str = Field(..., description="Short justification (max ~20 words)")
    suggested_date: Optional[date] = Field(
        None,
        alias="suggestedDate",
        description="Suggested due date (YYYY-MM-DD) for do/schedule tasks"
    )
    date_reasoning: Optional[str] = Field(None, alias="dateReasoning", description="Why that date")
    scheduling_hint: Optional[str] = Field(None, alias="schedulingHint", description="Busy-schedule hint for recurring instances")

    @field_validator("suggested_date", mode="before")
    @classmethod
    def _blank_date(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def quadrant_enum(self) -> Quadrant:
        return Quadrant(self.quadrant)


class BreakdownResult(BaseModel):
    """Suggested sub-task names."""
    subtasks: list[str] = Field(..., description="Concise sub-task names")

    @field_validator("subtasks")
    @classmethod
    def _drop_blank(cls, value: list[str]) -> list[str]:
        return [s.strip() for s in value if s and s.strip()]


class CoachingInsight(BaseModel):
    """One-sentence reflection on a manual quadrant move."""
    insight: str = Field(default="", description="Coaching insight, empty when unavailable")


class MoodSuggestion(BaseModel):
    """Encouraging tip based on mood and current 'do' tasks."""
    suggestion: str = Field(..., description="Short actionable suggestion")
