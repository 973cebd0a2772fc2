"""
SQLAlchemy models for the planner records filled by synchronization.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON, Float, Index
)
from sqlalchemy.sql import func
import enum

from studysync.core.database import Base


class ExamType(str, enum.Enum):
    """Kind of test."""
    WRITTEN = "written"
    ORAL = "oral"
    PRACTICAL = "practical"


class Priority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecordSource(str, enum.Enum):
    """Where a planner record came from."""
    MANUAL = "manual"
    IMPORT = "import"
    PORTAL = "portal"


class Subject(Base):
    """A school subject, unique by case-insensitive name."""

    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    name_key = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)
    professor = Column(String(255), nullable=True)
    color = Column(String(16), nullable=False)
    current_topic = Column(String(500), default="")
    exam_grades = Column(JSON, nullable=False, default=list)
    average_grade = Column(Float, default=0.0)
    total_hours = Column(Float, default=0.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @staticmethod
    def key_for(name: str) -> str:
        return name.strip().lower()


class Exam(Base):
    """A scheduled test."""

    __tablename__ = "exams"

    id = Column(String(64), primary_key=True)
    subject = Column(String(255), nullable=False)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    type = Column(String(20), nullable=False, default=ExamType.WRITTEN.value)
    topics = Column(JSON, nullable=False, default=list)
    priority = Column(String(10), default=Priority.MEDIUM.value)
    status = Column(String(20), default="pending")
    grade = Column(String(10), nullable=True)
    notes = Column(Text, nullable=True)
    source = Column(String(20), default=RecordSource.MANUAL.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_exams_subject_date', 'subject', 'date'),
    )


class Homework(Base):
    """A homework assignment."""

    __tablename__ = "homework"

    id = Column(String(64), primary_key=True)
    subject = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    due_date = Column(String(10), nullable=False)
    assigned_date = Column(String(10), nullable=False)
    topics = Column(JSON, nullable=False, default=list)
    priority = Column(String(10), default=Priority.MEDIUM.value)
    status = Column(String(20), default="pending")
    estimated_hours = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    source = Column(String(20), default=RecordSource.MANUAL.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_homework_subject_due_date', 'subject', 'due_date'),
    )


class Topic(Base):
    """A study topic attached to a subject."""

    __tablename__ = "topics"

    id = Column(String(64), primary_key=True)
    subject_name = Column(String(255), index=True, nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    date_added = Column(String(32), nullable=False)
    date_studied = Column(String(32), nullable=True)
    completed = Column(Boolean, default=False)
    difficulty = Column(String(10), default="medium")
    importance = Column(String(10), default="medium")
    notes = Column(Text, nullable=True)
