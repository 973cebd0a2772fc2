"""
FastAPI router for the automated sync schedule and manual runs.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from studysync.api.deps import get_scheduler
from studysync.schemas.sync import (
    SyncScheduleResponse, SyncScheduleUpdate, SyncResultResponse
)
from studysync.services.sync.schedule_manager import SyncScheduler

router = APIRouter()


@router.get("/schedule", response_model=SyncScheduleResponse)
async def get_sync_schedule(scheduler: SyncScheduler = Depends(get_scheduler)):
    return SyncScheduleResponse.model_validate(await scheduler.get_schedule())


@router.put("/schedule", response_model=SyncScheduleResponse)
async def update_sync_schedule(
    update: SyncScheduleUpdate,
    scheduler: SyncScheduler = Depends(get_scheduler)
):
    """Change the schedule; the next run is re-armed from the current time."""
    try:
        schedule = await scheduler.update_schedule(**update.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return SyncScheduleResponse.model_validate(schedule)


@router.post("/trigger", response_model=SyncResultResponse)
async def trigger_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
    """Run a sync now. A run already in progress yields a failed result, not a second run."""
    result = await scheduler.trigger_sync()
    return SyncResultResponse(**result.to_dict())


@router.get("/last-result", response_model=SyncResultResponse)
async def get_last_result(scheduler: SyncScheduler = Depends(get_scheduler)):
    if scheduler.last_result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No sync has run yet"
        )
    return SyncResultResponse(**scheduler.last_result.to_dict())
