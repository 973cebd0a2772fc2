from .planner import Subject, Exam, Homework, Topic, ExamType, Priority, RecordSource
from .sync_metadata import (
    SyncScheduleRecord, PortalSessionRecord, PortalCredentialRecord, SyncFrequency
)

__all__ = [
    "Subject",
    "Exam",
    "Homework",
    "Topic",
    "ExamType",
    "Priority",
    "RecordSource",
    "SyncScheduleRecord",
    "PortalSessionRecord",
    "PortalCredentialRecord",
    "SyncFrequency",
]
