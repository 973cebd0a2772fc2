"""
Synchronization Engine

Normalization, parsing and reconciliation of school portal data into the
study planner.

Components:
- Date and text normalizer for locale-variant dates, grades and topics
- Record parser for CSV, JSON and free-text imports
- Reconciliation engine with duplicate suppression
- Repositories over the planner, schedule and session tables

The portal-driven pipeline, the scheduler and the import service are imported
from their modules directly (``pipeline``, ``schedule_manager``,
``import_service``) since they depend on the portal integration.
"""

from .types import (
    RecordKind,
    DetectedFormat,
    Credentials,
    PortalSession,
    RawRecord,
    NormalizedAssignment,
    NormalizedGrade,
    NormalizedLesson,
    ParseOutcome,
    SyncResult,
    SyncSchedule,
)
from .normalizer import (
    normalize_date,
    parse_date,
    extract_topics,
    classify_assignment,
    classify_test_kind,
    normalize_grade,
    is_valid_grade,
    grade_to_number,
    average_grade,
)
from .record_parser import RecordParser, detect_format, hint_from_filename, normalize_raw_records
from .reconciliation import ReconciliationEngine
from .repositories import PlannerRepository, ScheduleRepository, SessionRepository

__all__ = [
    # Records
    'RecordKind',
    'DetectedFormat',
    'Credentials',
    'PortalSession',
    'RawRecord',
    'NormalizedAssignment',
    'NormalizedGrade',
    'NormalizedLesson',
    'ParseOutcome',
    'SyncResult',
    'SyncSchedule',

    # Normalizer
    'normalize_date',
    'parse_date',
    'extract_topics',
    'classify_assignment',
    'classify_test_kind',
    'normalize_grade',
    'is_valid_grade',
    'grade_to_number',
    'average_grade',

    # Parsing and reconciliation
    'RecordParser',
    'detect_format',
    'hint_from_filename',
    'normalize_raw_records',
    'ReconciliationEngine',
    'PlannerRepository',
    'ScheduleRepository',
    'SessionRepository',
]
