"""
Tests for next-run computation, the in-progress guard and outcome reporting.
"""

import asyncio
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, Mock

from studysync.integrations.portal.error_handler import NotAuthenticated
from studysync.services.sync.repositories import ScheduleRepository
from studysync.services.sync.schedule_manager import (
    SyncScheduler, compute_next_sync, describe_result, parse_sync_time
)
from studysync.services.sync.types import SyncResult, SyncSchedule


NOW = datetime(2025, 1, 10, 9, 0)


def clock():
    return NOW


def make_scheduler(session_factory, result=None, side_effect=None, notifier=None):
    pipeline = Mock()
    pipeline.run = AsyncMock(return_value=result, side_effect=side_effect)
    return SyncScheduler(
        pipeline,
        session_factory,
        notifier=notifier or AsyncMock(),
        user_id="student",
        now=clock,
    )


class TestComputeNextSync:
    """Test the pure next-run computation."""

    @pytest.mark.parametrize("frequency, now, expected", [
        ("daily", datetime(2025, 1, 10, 7, 0), datetime(2025, 1, 10, 8, 0)),
        ("daily", datetime(2025, 1, 10, 9, 0), datetime(2025, 1, 11, 8, 0)),
        ("daily", datetime(2025, 1, 10, 8, 0), datetime(2025, 1, 11, 8, 0)),
        ("weekly", datetime(2025, 1, 10, 7, 0), datetime(2025, 1, 10, 8, 0)),
        ("weekly", datetime(2025, 1, 10, 9, 0), datetime(2025, 1, 17, 8, 0)),
    ])
    def test_enabled_schedules(self, frequency, now, expected):
        schedule = SyncSchedule(enabled=True, frequency=frequency, time="08:00")
        assert compute_next_sync(schedule, now) == expected

    def test_seconds_are_dropped(self):
        schedule = SyncSchedule(enabled=True, frequency="daily", time="08:00")
        assert compute_next_sync(schedule, datetime(2025, 1, 10, 7, 59, 30, 500)) == datetime(2025, 1, 10, 8, 0)

    def test_manual_schedule_has_no_next_run(self):
        schedule = SyncSchedule(enabled=True, frequency="manual", time="08:00")
        assert compute_next_sync(schedule, NOW) is None

    def test_disabled_schedule_has_no_next_run(self):
        schedule = SyncSchedule(enabled=False, frequency="daily", time="08:00")
        assert compute_next_sync(schedule, NOW) is None

    @pytest.mark.parametrize("value", ["24:00", "8:00", "08:60", "", "otto"])
    def test_invalid_time(self, value):
        with pytest.raises(ValueError):
            parse_sync_time(value)


class TestDescribeResult:

    def test_success_with_items(self):
        result = SyncResult(success=True, exams_added=2, homework_added=1, grades_added=3)
        assert describe_result(result) == ("Sync completed", "2 tests, 1 homework, 3 grades added")

    def test_success_without_items_is_silent(self):
        assert describe_result(SyncResult(success=True)) is None

    def test_failure(self):
        assert describe_result(SyncResult.failure("boom")) == ("Sync failed", "boom")


class TestTriggerSync:
    """Test manual runs, the concurrency guard and persistence of outcomes."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_rejected(self, session_factory):
        """Test a trigger during a run returns a failure without a second run."""
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_run():
            started.set()
            await release.wait()
            return SyncResult(success=True)

        scheduler = make_scheduler(session_factory, side_effect=slow_run)
        first = asyncio.create_task(scheduler.trigger_sync())
        await started.wait()

        assert scheduler.in_progress is True
        second = await scheduler.trigger_sync()

        assert second.success is False
        assert second.error == "Sync already in progress"

        release.set()
        result = await first

        assert result.success is True
        assert scheduler.in_progress is False
        assert scheduler.pipeline.run.await_count == 1

    @pytest.mark.asyncio
    async def test_success_persists_outcome_and_notifies(self, session_factory):
        notifier = AsyncMock()
        scheduler = make_scheduler(
            session_factory, result=SyncResult(exams_added=1, grades_added=2), notifier=notifier
        )

        result = await scheduler.trigger_sync()

        assert result.success is True
        assert scheduler.last_result is result
        notifier.notify.assert_awaited_once_with("Sync completed", "1 tests, 0 homework, 2 grades added")

        async with session_factory() as db:
            repository = ScheduleRepository(db, "student")
            schedule = await repository.load()
            stored = await repository.load_last_result()
        assert schedule.last_sync == NOW
        assert stored.exams_added == 1
        assert stored.success is True

    @pytest.mark.asyncio
    async def test_success_without_changes_sends_nothing(self, session_factory):
        notifier = AsyncMock()
        scheduler = make_scheduler(session_factory, result=SyncResult(), notifier=notifier)

        await scheduler.trigger_sync()

        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authentication_failure_becomes_failed_result(self, session_factory):
        notifier = AsyncMock()
        scheduler = make_scheduler(session_factory, side_effect=NotAuthenticated(), notifier=notifier)

        result = await scheduler.trigger_sync()

        assert result.success is False
        assert result.error == "No stored credentials found"
        assert scheduler.in_progress is False
        notifier.notify.assert_awaited_once_with("Sync failed", "No stored credentials found")

        async with session_factory() as db:
            schedule = await ScheduleRepository(db, "student").load()
        assert schedule.last_sync is None

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self, session_factory):
        scheduler = make_scheduler(session_factory, side_effect=RuntimeError("browser crashed"))

        result = await scheduler.trigger_sync()

        assert result.success is False
        assert "browser crashed" in result.error

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_sync(self, session_factory):
        notifier = AsyncMock()
        notifier.notify.side_effect = RuntimeError("webhook down")
        scheduler = make_scheduler(session_factory, result=SyncResult(homework_added=1), notifier=notifier)

        result = await scheduler.trigger_sync()

        assert result.success is True

    @pytest.mark.asyncio
    async def test_manual_trigger_keeps_next_sync(self, session_factory):
        scheduler = make_scheduler(session_factory, result=SyncResult())
        await scheduler.update_schedule(enabled=True, frequency="daily", time="08:00")

        await scheduler.trigger_sync()

        schedule = await scheduler.get_schedule()
        assert schedule.next_sync == datetime(2025, 1, 11, 8, 0)
        await scheduler.stop()


class TestScheduleUpdates:
    """Test schedule persistence and re-arming."""

    @pytest.mark.asyncio
    async def test_default_schedule(self, session_factory):
        schedule = await make_scheduler(session_factory).get_schedule()

        assert schedule.enabled is False
        assert schedule.frequency == "daily"
        assert schedule.time == "08:00"
        assert schedule.next_sync is None

    @pytest.mark.asyncio
    async def test_enable_arms_timer(self, session_factory):
        scheduler = make_scheduler(session_factory)

        schedule = await scheduler.update_schedule(enabled=True, frequency="weekly", time="10:30")

        assert schedule.enabled is True
        assert schedule.frequency == "weekly"
        assert schedule.next_sync == datetime(2025, 1, 10, 10, 30)
        assert scheduler._timer is not None

        await scheduler.stop()
        assert scheduler._timer is None

    @pytest.mark.asyncio
    async def test_switching_to_manual_clears_next_sync(self, session_factory):
        scheduler = make_scheduler(session_factory)
        await scheduler.update_schedule(enabled=True)

        schedule = await scheduler.update_schedule(frequency="manual")

        assert schedule.enabled is True
        assert schedule.next_sync is None
        assert scheduler._timer is None

    @pytest.mark.asyncio
    async def test_none_values_leave_fields_unchanged(self, session_factory):
        scheduler = make_scheduler(session_factory)
        await scheduler.update_schedule(enabled=True, time="07:15")

        schedule = await scheduler.update_schedule(enabled=None, frequency=None, time=None)

        assert schedule.enabled is True
        assert schedule.time == "07:15"
        await scheduler.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {"frequency": "hourly"},
        {"time": "8am"},
        {"timezone": "Europe/Rome"},
    ])
    async def test_invalid_changes_rejected(self, session_factory, changes):
        scheduler = make_scheduler(session_factory)

        with pytest.raises(ValueError):
            await scheduler.update_schedule(**changes)

    @pytest.mark.asyncio
    async def test_start_restores_last_result(self, session_factory):
        async with session_factory() as db:
            await ScheduleRepository(db, "student").save_last_result(SyncResult(success=True, grades_added=4))

        scheduler = make_scheduler(session_factory)
        await scheduler.start()

        assert scheduler.last_result.grades_added == 4
        assert scheduler._timer is None
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_timer_fires_sync_and_rearms(self, session_factory):
        scheduler = make_scheduler(session_factory, result=SyncResult())
        scheduler.schedule_next = AsyncMock()

        await scheduler._fire_after(0)

        scheduler.pipeline.run.assert_awaited_once()
        scheduler.schedule_next.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_rearm_is_retried(self, session_factory):
        scheduler = make_scheduler(session_factory, result=SyncResult())
        scheduler.rearm_retry_seconds = 0
        scheduler.schedule_next = AsyncMock(side_effect=[RuntimeError("database is locked"), None])

        await scheduler._fire_after(0)

        scheduler.pipeline.run.assert_awaited_once()
        assert scheduler.schedule_next.await_count == 2
        assert scheduler._timer is None

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_rearm(self, session_factory):
        scheduler = make_scheduler(session_factory, result=SyncResult())
        scheduler.schedule_next = AsyncMock(side_effect=RuntimeError("database is locked"))

        task = asyncio.create_task(scheduler._fire_after(0))
        for _ in range(100):
            if scheduler._timer is task:
                break
            await asyncio.sleep(0.01)

        assert scheduler._timer is task
        await scheduler.stop()
        assert task.cancelled()
        scheduler.pipeline.run.assert_awaited_once()
