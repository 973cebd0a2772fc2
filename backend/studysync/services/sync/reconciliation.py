"""
Reconciliation Engine

Merges normalized assignments, grades and lessons into the planner store
without creating duplicates. Writes happen sequentially inside one
transaction so every duplicate check sees the records inserted before it.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional

from studysync.models.planner import (
    Subject, Exam, Homework, Topic, ExamType, Priority, RecordSource
)
from .normalizer import normalize_grade, is_valid_grade, average_grade, subject_color
from .repositories import PlannerRepository
from .types import NormalizedAssignment, NormalizedGrade, NormalizedLesson, SyncResult

logger = logging.getLogger(__name__)


DESCRIPTION_PREFIX_LENGTH = 20
DEFAULT_HOMEWORK_HOURS = 1.0


def is_duplicate_description(stored: Optional[str], incoming: str) -> bool:
    """Stored text contains the first characters of the incoming one, ignoring case."""
    prefix = incoming.lower()[:DESCRIPTION_PREFIX_LENGTH]
    return prefix in (stored or "").lower()


class ReconciliationEngine:
    """
    Inserts only genuinely new planner records.

    Args:
        repository: CRUD store the batch is written to
        source: Provenance stamped on created exams and homework
        today: Clock used for assignment and topic dates
    """

    def __init__(
        self,
        repository: PlannerRepository,
        source: RecordSource = RecordSource.IMPORT,
        today: Callable[[], date] = date.today
    ):
        self.repository = repository
        self.source = source
        self.today = today
        self._subjects: Dict[str, Subject] = {}

    async def _load_subjects(self) -> None:
        self._subjects = {s.name_key: s for s in await self.repository.get_subjects()}

    async def _subject_for(self, name: str, result: SyncResult, current_topic: str = "") -> Subject:
        key = Subject.key_for(name)
        subject = self._subjects.get(key)
        if subject is None:
            subject = Subject(
                name=name.strip(),
                name_key=key,
                color=subject_color(name),
                current_topic=current_topic,
                exam_grades=[],
                average_grade=0.0,
                total_hours=0.0,
            )
            subject = await self.repository.save_subject(subject)
            self._subjects[key] = subject
            result.subjects_updated += 1
            logger.info(f"Created subject {subject.name}")
        return subject

    async def reconcile(
        self,
        assignments: Iterable[NormalizedAssignment],
        grades: Iterable[NormalizedGrade]
    ) -> SyncResult:
        """
        Insert new exams, homework, topics and grades.

        Duplicate rule for assignments: same subject (case-insensitive), same
        date, and the stored description contains the first 20 characters of
        the incoming one. Grades are appended to the subject only when the
        exact grade string is not already listed.
        """
        result = SyncResult(success=True)
        await self._load_subjects()
        exams = await self.repository.get_exams()
        homework = await self.repository.get_homework()

        try:
            for assignment in assignments:
                await self._reconcile_assignment(assignment, exams, homework, result)
            for grade in grades:
                await self._reconcile_grade(grade, result)
            await self.repository.commit()
        except Exception:
            await self.repository.rollback()
            raise

        logger.info(
            f"Reconciled: {result.exams_added} exams, {result.homework_added} homework, "
            f"{result.grades_added} grades, {result.subjects_updated} new subjects, "
            f"{result.duplicates_skipped} duplicates skipped"
        )
        return result

    def _warn(self, result: SyncResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)

    async def _reconcile_assignment(
        self,
        assignment: NormalizedAssignment,
        exams: List[Exam],
        homework: List[Homework],
        result: SyncResult
    ) -> None:
        if not assignment.subject or not assignment.date or not assignment.description:
            self._warn(result, f"Skipped incomplete assignment: {assignment!r}")
            return

        subject_key = Subject.key_for(assignment.subject)
        await self._subject_for(
            assignment.subject, result, assignment.topics[0] if assignment.topics else ""
        )

        if assignment.is_test:
            duplicate = any(
                Subject.key_for(e.subject) == subject_key
                and e.date == assignment.date
                and is_duplicate_description(e.notes, assignment.description)
                for e in exams
            )
        else:
            duplicate = any(
                Subject.key_for(h.subject) == subject_key
                and h.due_date == assignment.date
                and is_duplicate_description(h.description, assignment.description)
                for h in homework
            )
        if duplicate:
            result.duplicates_skipped += 1
            return

        if assignment.is_test:
            exam = await self.repository.save_exam(Exam(
                id=f"exam-{uuid.uuid4().hex}",
                subject=assignment.subject,
                date=assignment.date,
                type=assignment.test_kind or ExamType.WRITTEN.value,
                topics=list(assignment.topics),
                priority=Priority.MEDIUM.value,
                status="pending",
                notes=assignment.description,
                source=self.source.value,
            ))
            exams.append(exam)
            result.exams_added += 1
        else:
            item = await self.repository.save_homework(Homework(
                id=f"homework-{uuid.uuid4().hex}",
                subject=assignment.subject,
                description=assignment.description,
                due_date=assignment.date,
                assigned_date=self.today().isoformat(),
                topics=list(assignment.topics),
                priority=Priority.MEDIUM.value,
                status="pending",
                estimated_hours=DEFAULT_HOMEWORK_HOURS,
                source=self.source.value,
            ))
            homework.append(item)
            result.homework_added += 1

        # Topics follow the inserted record only, so a repeated import adds none
        for title in assignment.topics:
            await self.repository.save_topic(Topic(
                id=f"topic-{uuid.uuid4().hex}",
                subject_name=assignment.subject,
                title=title,
                description=f"Argomento estratto da: {assignment.description}",
                date_added=datetime.now().isoformat(),
                completed=False,
                difficulty="medium",
                importance="medium",
                notes=assignment.description,
            ))
            result.topics_added += 1

    async def _reconcile_grade(self, grade: NormalizedGrade, result: SyncResult) -> None:
        value = normalize_grade(grade.grade)
        if not grade.subject or not value:
            self._warn(result, f"Skipped incomplete grade: {grade!r}")
            return
        if not is_valid_grade(value):
            self._warn(result, f"Dropped invalid grade {grade.grade!r} for {grade.subject}")
            return

        subject = await self._subject_for(grade.subject, result)
        current = list(subject.exam_grades or [])
        if value in current:
            result.duplicates_skipped += 1
            return

        # Reassign so the JSON column is flagged as changed
        subject.exam_grades = current + [value]
        subject.average_grade = average_grade(subject.exam_grades)
        await self.repository.save_subject(subject)
        result.grades_added += 1

    async def reconcile_lessons(self, lessons: Iterable[NormalizedLesson]) -> SyncResult:
        """
        Record lesson topics.

        A topic is created only when the subject has no topic with the same
        title, and the subject's current topic follows the latest lesson.
        """
        result = SyncResult(success=True)
        await self._load_subjects()

        try:
            for lesson in lessons:
                result.lessons_found += 1
                topic_title = (lesson.topic or "").strip()
                if not lesson.subject or not topic_title:
                    continue

                subject = await self._subject_for(lesson.subject, result, topic_title)
                known = {t.title.strip().lower() for t in await self.repository.get_topics(subject.name)}
                if topic_title.lower() in known:
                    continue

                await self.repository.save_topic(Topic(
                    id=f"topic-{uuid.uuid4().hex}",
                    subject_name=subject.name,
                    title=topic_title,
                    description=f"Lezione del {lesson.date}" + (f", ora {lesson.hour}" if lesson.hour else ""),
                    date_added=datetime.now().isoformat(),
                    completed=False,
                    difficulty="medium",
                    importance="medium",
                    notes=lesson.homework or None,
                ))
                subject.current_topic = topic_title
                await self.repository.save_subject(subject)
                result.topics_added += 1
            await self.repository.commit()
        except Exception:
            await self.repository.rollback()
            raise

        return result
