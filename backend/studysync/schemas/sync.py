"""
Pydantic schemas for the import, portal and sync API endpoints.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Literal
from datetime import datetime

from studysync.services.sync.types import (
    NormalizedAssignment, NormalizedGrade
)


class ImportPreviewRequest(BaseModel):
    """Pasted export to parse."""
    text: str = Field(..., min_length=1)
    format: Optional[Literal["csv", "json", "text"]] = None


class AssignmentSchema(BaseModel):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    subject: str = Field(..., min_length=1)
    type: Literal["homework", "test"]
    description: str = Field(..., min_length=1)
    topics: List[str] = []
    test_kind: Optional[Literal["written", "oral", "practical"]] = None

    model_config = ConfigDict(from_attributes=True)

    def to_record(self) -> NormalizedAssignment:
        return NormalizedAssignment(**self.model_dump())


class GradeSchema(BaseModel):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    subject: str = Field(..., min_length=1)
    grade: str
    type: str = "written"
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def to_record(self) -> NormalizedGrade:
        return NormalizedGrade(**self.model_dump())


class LessonSchema(BaseModel):
    date: str
    subject: str
    hour: str = ""
    topic: str = ""
    homework: str = ""

    model_config = ConfigDict(from_attributes=True)


class ImportPreviewResponse(BaseModel):
    """Parsed records shown to the user before confirming the import."""
    format: Optional[str]
    assignments: List[AssignmentSchema]
    grades: List[GradeSchema]
    lessons: List[LessonSchema] = []
    warnings: List[str]
    summary: str


class ImportConfirmRequest(BaseModel):
    assignments: List[AssignmentSchema] = []
    grades: List[GradeSchema] = []


class SyncResultResponse(BaseModel):
    success: bool
    exams_added: int = 0
    homework_added: int = 0
    grades_added: int = 0
    subjects_updated: int = 0
    topics_added: int = 0
    duplicates_skipped: int = 0
    lessons_found: int = 0
    error: Optional[str] = None
    warnings: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class PortalLoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    school_code: Optional[str] = None


class PortalStatusResponse(BaseModel):
    state: str
    user: Optional[str] = None
    expires_at: Optional[datetime] = None


class SyncScheduleResponse(BaseModel):
    enabled: bool
    frequency: Literal["daily", "weekly", "manual"]
    time: str
    last_sync: Optional[datetime] = None
    next_sync: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SyncScheduleUpdate(BaseModel):
    """Partial schedule update; omitted fields are left unchanged."""
    enabled: Optional[bool] = None
    frequency: Optional[Literal["daily", "weekly", "manual"]] = None
    time: Optional[str] = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
