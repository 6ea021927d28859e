"""Per-user auxiliary records: student context and app settings."""

from pydantic import BaseModel, ConfigDict, Field


class DatedNote(BaseModel):
    """Free text with an optional date string (exams, assignments)."""
    model_config = ConfigDict(frozen=True)

    text: str = Field(default="", description="What is coming up")
    date: str = Field(default="", description="Date string as entered, may be empty")


class StudentContext(BaseModel):
    """Context the classifier uses to judge urgency and importance."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    exams: DatedNote = Field(default_factory=DatedNote, description="Upcoming exams")
    assignments: DatedNote = Field(default_factory=DatedNote, description="Upcoming assignments")
    goals: str = Field(default="", description="Longer-term goals")
    mood: str = Field(default="", description="Current mood")
    open_context: str = Field(default="", alias="openContext", description="Anything else")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AppSettings(BaseModel):
    """User settings. api_key is the credential gating all AI calls."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enable_coaching: bool = Field(default=True, alias="enableCoaching", description="Show coaching insight on manual moves")
    api_key: str = Field(default="", alias="apiKey", description="User's personal AI API key")

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


DEFAULT_STUDENT_CONTEXT = StudentContext()
DEFAULT_SETTINGS = AppSettings()
