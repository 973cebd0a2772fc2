"""
Records exchanged between the parser, the scraper, reconciliation and the scheduler.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional


class RecordKind(str, Enum):
    TEST = "test"
    HOMEWORK = "homework"
    GRADE = "grade"
    LESSON = "lesson"


class DetectedFormat(str, Enum):
    """Shape of a manual import payload."""
    CSV = "csv"
    JSON = "json"
    FREE_TEXT = "text"


@dataclass
class Credentials:
    """Portal login credentials; only ever persisted encrypted."""
    username: str
    password: str
    school_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Credentials':
        return cls(
            username=data['username'],
            password=data['password'],
            school_code=data.get('school_code'),
        )


@dataclass
class PortalSession:
    session_id: str
    user_id: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return bool(self.session_id) and now < self.expires_at


@dataclass
class RawRecord:
    """Untyped record emitted by the scraper before normalization."""
    date: str
    subject: str
    kind: RecordKind
    description: str
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass
class NormalizedAssignment:
    date: str  # YYYY-MM-DD
    subject: str
    type: str  # "homework" | "test"
    description: str
    topics: List[str] = field(default_factory=list)
    test_kind: Optional[str] = None  # "written" | "oral" | "practical"

    @property
    def is_test(self) -> bool:
        return self.type == RecordKind.TEST.value


@dataclass
class NormalizedGrade:
    date: str
    subject: str
    grade: str
    type: str = "written"
    description: Optional[str] = None


@dataclass
class NormalizedLesson:
    date: str
    subject: str
    hour: str = ""
    topic: str = ""
    homework: str = ""


@dataclass
class ParseOutcome:
    """Parsed records plus every line or record that was skipped or defaulted."""
    format: Optional[DetectedFormat] = None
    assignments: List[NormalizedAssignment] = field(default_factory=list)
    grades: List[NormalizedGrade] = field(default_factory=list)
    lessons: List[NormalizedLesson] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.assignments and not self.grades and not self.lessons

    def summary(self) -> str:
        tests = len([a for a in self.assignments if a.is_test])
        return (
            f"{tests} tests, {len(self.assignments) - tests} homework, "
            f"{len(self.grades)} grades, {len(self.warnings)} warnings"
        )


@dataclass
class SyncResult:
    success: bool = False
    exams_added: int = 0
    homework_added: int = 0
    grades_added: int = 0
    subjects_updated: int = 0
    topics_added: int = 0
    duplicates_skipped: int = 0
    lessons_found: int = 0
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def total_added(self) -> int:
        return self.exams_added + self.homework_added + self.grades_added

    def merge(self, other: 'SyncResult') -> None:
        self.exams_added += other.exams_added
        self.homework_added += other.homework_added
        self.grades_added += other.grades_added
        self.subjects_updated += other.subjects_updated
        self.topics_added += other.topics_added
        self.duplicates_skipped += other.duplicates_skipped
        self.lessons_found += other.lessons_found
        self.warnings.extend(other.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def failure(cls, error: str) -> 'SyncResult':
        return cls(success=False, error=error)


@dataclass
class SyncSchedule:
    enabled: bool = False
    frequency: str = "daily"  # "daily" | "weekly" | "manual"
    time: str = "08:00"  # HH:MM
    last_sync: Optional[datetime] = None
    next_sync: Optional[datetime] = None
