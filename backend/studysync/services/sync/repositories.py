"""
Async repositories over the planner, schedule and session tables.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from studysync.core.config import settings
from studysync.models.planner import Subject, Exam, Homework, Topic
from studysync.models.sync_metadata import (
    SyncScheduleRecord, PortalSessionRecord, SyncFrequency
)
from .types import PortalSession, SyncResult, SyncSchedule

logger = logging.getLogger(__name__)


class PlannerRepository:
    """
    CRUD store for exams, homework, subjects and topics.

    Saves are upserts keyed by ``id`` (subjects by ``name_key``) and are
    committed by the caller through ``commit()`` so a reconciliation batch
    writes sequentially inside one transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_exams(self, subject: Optional[str] = None) -> List[Exam]:
        query = select(Exam)
        if subject:
            query = query.where(Exam.subject.ilike(subject.strip()))
        result = await self.db.execute(query.order_by(Exam.date))
        return list(result.scalars().all())

    async def save_exam(self, exam: Exam) -> Exam:
        return await self.db.merge(exam)

    async def get_homework(self, subject: Optional[str] = None) -> List[Homework]:
        query = select(Homework)
        if subject:
            query = query.where(Homework.subject.ilike(subject.strip()))
        result = await self.db.execute(query.order_by(Homework.due_date))
        return list(result.scalars().all())

    async def save_homework(self, homework: Homework) -> Homework:
        return await self.db.merge(homework)

    async def get_subjects(self) -> List[Subject]:
        result = await self.db.execute(select(Subject).order_by(Subject.name))
        return list(result.scalars().all())

    async def get_subject(self, name: str) -> Optional[Subject]:
        result = await self.db.execute(
            select(Subject).where(Subject.name_key == Subject.key_for(name))
        )
        return result.scalar_one_or_none()

    async def save_subject(self, subject: Subject) -> Subject:
        subject.name_key = Subject.key_for(subject.name)
        existing = await self.get_subject(subject.name)
        if existing is None:
            self.db.add(subject)
            await self.db.flush()
            return subject
        if existing is not subject:
            for column in ('display_name', 'professor', 'color', 'current_topic',
                           'exam_grades', 'average_grade', 'total_hours'):
                setattr(existing, column, getattr(subject, column))
        await self.db.flush()
        return existing

    async def get_topics(self, subject_name: Optional[str] = None) -> List[Topic]:
        query = select(Topic)
        if subject_name:
            query = query.where(Topic.subject_name.ilike(subject_name.strip()))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def save_topic(self, topic: Topic) -> Topic:
        return await self.db.merge(topic)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


class ScheduleRepository:
    """The single persisted sync schedule of a user."""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def _record(self) -> Optional[SyncScheduleRecord]:
        result = await self.db.execute(
            select(SyncScheduleRecord).where(SyncScheduleRecord.user_id == self.user_id)
        )
        return result.scalar_one_or_none()

    async def load(self) -> SyncSchedule:
        record = await self._record()
        if not record:
            return SyncSchedule(
                enabled=False,
                frequency=SyncFrequency.DAILY.value,
                time=settings.DEFAULT_SYNC_TIME,
            )
        return SyncSchedule(
            enabled=bool(record.enabled),
            frequency=record.frequency,
            time=record.time,
            last_sync=record.last_sync,
            next_sync=record.next_sync,
        )

    async def save(self, schedule: SyncSchedule) -> None:
        record = await self._record()
        if not record:
            record = SyncScheduleRecord(user_id=self.user_id)
            self.db.add(record)
        record.enabled = schedule.enabled
        record.frequency = schedule.frequency
        record.time = schedule.time
        record.last_sync = schedule.last_sync
        record.next_sync = schedule.next_sync
        await self.db.commit()

    async def load_last_result(self) -> Optional[SyncResult]:
        record = await self._record()
        if not record or not record.last_result:
            return None
        return SyncResult(**record.last_result)

    async def save_last_result(self, result: SyncResult) -> None:
        record = await self._record()
        if not record:
            schedule = await self.load()
            record = SyncScheduleRecord(
                user_id=self.user_id,
                enabled=schedule.enabled,
                frequency=schedule.frequency,
                time=schedule.time,
            )
            self.db.add(record)
        record.last_result = result.to_dict()
        await self.db.commit()


class SessionRepository:
    """Persisted portal session used to rehydrate authentication state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, user_id: str) -> Optional[PortalSession]:
        result = await self.db.execute(
            select(PortalSessionRecord).where(PortalSessionRecord.user_id == user_id)
        )
        record = result.scalar_one_or_none()
        if not record:
            return None
        return PortalSession(
            session_id=record.session_id,
            user_id=record.portal_user,
            expires_at=record.expires_at,
        )

    async def save(self, user_id: str, session: PortalSession) -> None:
        await self.db.execute(delete(PortalSessionRecord).where(PortalSessionRecord.user_id == user_id))
        self.db.add(PortalSessionRecord(
            user_id=user_id,
            session_id=session.session_id,
            portal_user=session.user_id,
            expires_at=session.expires_at,
        ))
        await self.db.commit()

    async def clear(self, user_id: str) -> None:
        await self.db.execute(delete(PortalSessionRecord).where(PortalSessionRecord.user_id == user_id))
        await self.db.commit()
        logger.debug(f"Cleared portal session for {user_id}")
