"""
Tests for the reconciliation engine against an in-memory database.
"""

import pytest
from datetime import date
from unittest.mock import AsyncMock

from studysync.models.planner import Exam, RecordSource
from studysync.services.sync.normalizer import subject_color
from studysync.services.sync.reconciliation import ReconciliationEngine, is_duplicate_description
from studysync.services.sync.repositories import PlannerRepository
from studysync.services.sync.types import (
    NormalizedAssignment, NormalizedGrade, NormalizedLesson
)


def today():
    return date(2025, 1, 10)


def make_engine(db, source=RecordSource.IMPORT):
    return ReconciliationEngine(PlannerRepository(db), source, today)


def verifica(description="Verifica su derivate e integrali", subject="Matematica", when="2025-01-15"):
    return NormalizedAssignment(
        date=when,
        subject=subject,
        type="test",
        description=description,
        topics=["derivate e integrali"],
        test_kind="written",
    )


def compiti(description="Esercizi pagina 40", subject="Inglese", when="2025-01-16"):
    return NormalizedAssignment(
        date=when, subject=subject, type="homework", description=description, topics=[]
    )


def grade(value, subject="Matematica"):
    return NormalizedGrade(date="2025-01-10", subject=subject, grade=value)


class TestDuplicateDescription:

    def test_prefix_contained_ignoring_case(self):
        assert is_duplicate_description("Verifica su derivate e integrali", "VERIFICA SU DERIVATE E INTEGRALI.")

    def test_different_prefix(self):
        assert not is_duplicate_description("Verifica su derivate e integrali", "Interrogazione su derivate")

    def test_missing_stored_text(self):
        assert not is_duplicate_description(None, "Esercizi")


class TestReconcileAssignments:
    """Test exam and homework insertion and duplicate suppression."""

    @pytest.mark.asyncio
    async def test_inserts_exam_homework_subjects_and_topics(self, db):
        result = await make_engine(db, RecordSource.PORTAL).reconcile([verifica(), compiti()], [])

        assert result.success is True
        assert result.exams_added == 1
        assert result.homework_added == 1
        assert result.subjects_updated == 2
        assert result.topics_added == 1

        repository = PlannerRepository(db)
        exams = await repository.get_exams()
        assert len(exams) == 1
        exam = exams[0]
        assert exam.id.startswith("exam-")
        assert exam.type == "written"
        assert exam.priority == "medium"
        assert exam.notes == "Verifica su derivate e integrali"
        assert exam.topics == ["derivate e integrali"]
        assert exam.source == "portal"

        homework = (await repository.get_homework())[0]
        assert homework.due_date == "2025-01-16"
        assert homework.assigned_date == "2025-01-10"
        assert homework.estimated_hours == 1.0

        subject = await repository.get_subject("matematica")
        assert subject.color == subject_color("Matematica")
        assert subject.current_topic == "derivate e integrali"

        topics = await repository.get_topics("Matematica")
        assert [t.title for t in topics] == ["derivate e integrali"]
        assert topics[0].description == "Argomento estratto da: Verifica su derivate e integrali"

    @pytest.mark.asyncio
    async def test_second_run_adds_nothing(self, db):
        """Test reconciling the same batch twice is idempotent."""
        batch = [verifica(), compiti()]
        await make_engine(db).reconcile(batch, [grade("8")])

        result = await make_engine(db).reconcile(batch, [grade("8")])

        assert result.total_added == 0
        assert result.topics_added == 0
        assert result.subjects_updated == 0
        assert result.duplicates_skipped == 3
        repository = PlannerRepository(db)
        assert len(await repository.get_exams()) == 1
        assert len(await repository.get_homework()) == 1
        assert len(await repository.get_topics()) == 1

    @pytest.mark.asyncio
    async def test_fuzzy_duplicate_ignores_case_and_trailing_text(self, db):
        await make_engine(db).reconcile([verifica()], [])

        result = await make_engine(db).reconcile(
            [verifica("verifica su derivate e integrali.", subject="MATEMATICA")], []
        )

        assert result.exams_added == 0
        assert result.duplicates_skipped == 1

    @pytest.mark.asyncio
    async def test_different_prefix_is_a_new_exam(self, db):
        await make_engine(db).reconcile([verifica()], [])

        result = await make_engine(db).reconcile([verifica("Interrogazione su derivate")], [])

        assert result.exams_added == 1
        assert len(await PlannerRepository(db).get_exams()) == 2

    @pytest.mark.asyncio
    async def test_same_text_on_another_date_is_new(self, db):
        await make_engine(db).reconcile([verifica()], [])

        result = await make_engine(db).reconcile([verifica(when="2025-02-15")], [])

        assert result.exams_added == 1

    @pytest.mark.asyncio
    async def test_duplicates_within_one_batch(self, db):
        result = await make_engine(db).reconcile([compiti(), compiti()], [])

        assert result.homework_added == 1
        assert result.duplicates_skipped == 1

    @pytest.mark.asyncio
    async def test_incomplete_assignment_skipped_with_warning(self, db):
        result = await make_engine(db).reconcile([compiti(subject="")], [])

        assert result.homework_added == 0
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self):
        repository = AsyncMock()
        repository.get_subjects.return_value = []
        repository.get_exams.return_value = []
        repository.get_homework.return_value = []
        repository.save_subject.side_effect = lambda subject: subject
        repository.save_exam.side_effect = RuntimeError("disk full")
        engine = ReconciliationEngine(repository, RecordSource.IMPORT, today)

        with pytest.raises(RuntimeError):
            await engine.reconcile([verifica()], [])

        repository.rollback.assert_awaited_once()
        repository.commit.assert_not_awaited()


class TestReconcileGrades:
    """Test grade validation and exact-match dedup."""

    @pytest.mark.asyncio
    async def test_valid_grades_appended_and_average_recomputed(self, db):
        grades = [grade(value) for value in ["8.5", "7+", "6,5", "abc", "11/10", ""]]

        result = await make_engine(db).reconcile([], grades)

        assert result.grades_added == 3
        assert len(result.warnings) == 3
        subject = await PlannerRepository(db).get_subject("Matematica")
        assert subject.exam_grades == ["8.5", "7+", "6,5"]
        assert subject.average_grade == 7.5

    @pytest.mark.asyncio
    async def test_exact_grade_already_listed_is_skipped(self, db):
        await make_engine(db).reconcile([], [grade("8")])

        result = await make_engine(db).reconcile([], [grade("8"), grade("8+")])

        assert result.grades_added == 1
        assert result.duplicates_skipped == 1
        subject = await PlannerRepository(db).get_subject("Matematica")
        assert subject.exam_grades == ["8", "8+"]

    @pytest.mark.asyncio
    async def test_subject_name_is_case_insensitive(self, db):
        await make_engine(db).reconcile([], [grade("6", subject="Storia")])

        result = await make_engine(db).reconcile([], [grade("7", subject="STORIA")])

        assert result.subjects_updated == 0
        subjects = await PlannerRepository(db).get_subjects()
        assert len(subjects) == 1
        assert subjects[0].exam_grades == ["6", "7"]


class TestReconcileLessons:

    @pytest.mark.asyncio
    async def test_lesson_topic_created_once(self, db):
        lessons = [NormalizedLesson(date="2025-01-10", subject="Matematica", hour="1", topic="Equazioni")]

        first = await make_engine(db).reconcile_lessons(lessons)
        second = await make_engine(db).reconcile_lessons(
            [NormalizedLesson(date="2025-01-11", subject="matematica", topic="equazioni")]
        )

        assert first.lessons_found == 1
        assert first.topics_added == 1
        assert second.lessons_found == 1
        assert second.topics_added == 0

        repository = PlannerRepository(db)
        topics = await repository.get_topics("Matematica")
        assert len(topics) == 1
        assert topics[0].description == "Lezione del 2025-01-10, ora 1"
        assert (await repository.get_subject("Matematica")).current_topic == "Equazioni"

    @pytest.mark.asyncio
    async def test_lessons_without_topic_only_counted(self, db):
        result = await make_engine(db).reconcile_lessons(
            [NormalizedLesson(date="2025-01-10", subject="Fisica", topic="")]
        )

        assert result.lessons_found == 1
        assert result.topics_added == 0
        assert await PlannerRepository(db).get_subjects() == []
