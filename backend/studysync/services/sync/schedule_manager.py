"""
Sync Scheduler

Persists the user's sync schedule, arms a single deferred run for the next
scheduled instant, guards against overlapping runs and reports every outcome.
There is no catch-up of runs missed while the process was down: the next
instant is always computed from "now".
"""

import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from studysync.integrations.portal.error_handler import (
    ConcurrentSyncRejected,
    SyncError,
    log_sync_error,
)
from studysync.models.sync_metadata import SyncFrequency
from studysync.services.notifications import NotificationChannel, LogNotifier
from .pipeline import SyncPipeline
from .repositories import ScheduleRepository
from .types import SyncResult, SyncSchedule

logger = logging.getLogger(__name__)


TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
SCHEDULE_FIELDS = ('enabled', 'frequency', 'time')
REARM_RETRY_SECONDS = 60.0


def parse_sync_time(value: str) -> Tuple[int, int]:
    """Hours and minutes of an "HH:MM" string."""
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid sync time {value!r}, expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def compute_next_sync(schedule: SyncSchedule, now: datetime) -> Optional[datetime]:
    """
    Next automated run: today at ``schedule.time``, pushed one day (daily) or
    seven days (weekly) when that instant is not in the future. Disabled and
    manual schedules have no next run.
    """
    if not schedule.enabled or schedule.frequency == SyncFrequency.MANUAL.value:
        return None

    hours, minutes = parse_sync_time(schedule.time)
    next_sync = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if next_sync <= now:
        if schedule.frequency == SyncFrequency.WEEKLY.value:
            next_sync += timedelta(days=7)
        else:
            next_sync += timedelta(days=1)
    return next_sync


def describe_result(result: SyncResult) -> Optional[Tuple[str, str]]:
    """Notification title and body for a result, or None when there is nothing to say."""
    if result.success:
        if result.total_added == 0:
            return None
        return (
            "Sync completed",
            f"{result.exams_added} tests, {result.homework_added} homework, "
            f"{result.grades_added} grades added",
        )
    return "Sync failed", result.error or "Unknown error during synchronization"


class SyncScheduler:
    """
    Owner of the automated sync timer and the in-progress guard.

    Manual triggers and the timer share the guard, so at most one pipeline
    runs at a time.
    """

    def __init__(
        self,
        pipeline: SyncPipeline,
        session_factory: async_sessionmaker,
        notifier: Optional[NotificationChannel] = None,
        user_id: str = "default",
        now: Callable[[], datetime] = datetime.now,
        rearm_retry_seconds: float = REARM_RETRY_SECONDS
    ):
        self.pipeline = pipeline
        self.session_factory = session_factory
        self.notifier = notifier or LogNotifier()
        self.user_id = user_id
        self.now = now
        self.rearm_retry_seconds = rearm_retry_seconds

        self._in_progress = False
        self._timer: Optional[asyncio.Task] = None
        self._last_result: Optional[SyncResult] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    async def start(self) -> None:
        """Load the last outcome and arm the timer from the persisted schedule."""
        async with self.session_factory() as db:
            self._last_result = await ScheduleRepository(db, self.user_id).load_last_result()
        next_sync = await self.schedule_next()
        logger.info(f"Sync scheduler started, next sync: {next_sync or 'not scheduled'}")

    async def stop(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        logger.info("Sync scheduler stopped")

    async def get_schedule(self) -> SyncSchedule:
        async with self.session_factory() as db:
            return await ScheduleRepository(db, self.user_id).load()

    async def update_schedule(self, **changes: Any) -> SyncSchedule:
        """
        Apply schedule changes, persist them and re-arm the timer.

        Raises:
            ValueError: on an unknown field, frequency or malformed time
        """
        unknown = set(changes) - set(SCHEDULE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown schedule fields: {', '.join(sorted(unknown))}")
        changes = {key: value for key, value in changes.items() if value is not None}
        if 'frequency' in changes:
            changes['frequency'] = SyncFrequency(changes['frequency']).value
        if 'time' in changes:
            parse_sync_time(changes['time'])

        async with self.session_factory() as db:
            repository = ScheduleRepository(db, self.user_id)
            schedule = await repository.load()
            for key, value in changes.items():
                setattr(schedule, key, value)
            await repository.save(schedule)

        await self.schedule_next()
        return await self.get_schedule()

    async def schedule_next(self) -> Optional[datetime]:
        """Compute and persist ``next_sync`` and arm the single deferred run."""
        self._cancel_timer()
        now = self.now()

        async with self.session_factory() as db:
            repository = ScheduleRepository(db, self.user_id)
            schedule = await repository.load()
            schedule.next_sync = compute_next_sync(schedule, now)
            await repository.save(schedule)

        if schedule.next_sync is not None:
            delay = (schedule.next_sync - now).total_seconds()
            self._timer = asyncio.create_task(self._fire_after(delay))
            logger.info(f"Next sync armed for {schedule.next_sync.isoformat()} (in {delay:.0f}s)")
        return schedule.next_sync

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(max(delay, 0))
        # This task is finishing; re-arming must not cancel it
        self._timer = None
        await self.trigger_sync()

        while True:
            try:
                await self.schedule_next()
                return
            except Exception as e:
                log_sync_error(e, {'operation_type': 'schedule_next'})
            # Held as the timer while waiting so stop() or a schedule change cancels it
            self._timer = asyncio.current_task()
            await asyncio.sleep(self.rearm_retry_seconds)
            self._timer = None

    async def trigger_sync(self) -> SyncResult:
        """
        Run the pipeline now.

        Returns immediately with a failed result when a run is already in
        progress. Never raises: every failure ends up in the result.
        ``next_sync`` is left untouched.
        """
        if self._in_progress:
            rejected = ConcurrentSyncRejected()
            logger.info(rejected.message)
            return SyncResult.failure(rejected.message)

        self._in_progress = True
        try:
            try:
                result = await self.pipeline.run()
                result.success = True
            except SyncError as e:
                log_sync_error(e, {'operation_type': 'sync'})
                result = SyncResult.failure(e.message)
            except Exception as e:
                log_sync_error(e, {'operation_type': 'sync'})
                result = SyncResult.failure(f"Unexpected sync error: {e}")

            self._last_result = result
            await self._record_outcome(result)
            await self._notify(result)
            return result
        finally:
            self._in_progress = False

    async def _record_outcome(self, result: SyncResult) -> None:
        try:
            async with self.session_factory() as db:
                repository = ScheduleRepository(db, self.user_id)
                if result.success:
                    schedule = await repository.load()
                    schedule.last_sync = self.now()
                    await repository.save(schedule)
                await repository.save_last_result(result)
        except Exception as e:
            logger.error(f"Failed to persist sync outcome: {e}")

    async def _notify(self, result: SyncResult) -> None:
        message = describe_result(result)
        if message is None:
            return
        try:
            await self.notifier.notify(*message)
        except Exception as e:
            logger.warning(f"Sync notification failed: {e}")
