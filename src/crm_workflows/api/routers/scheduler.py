"""
Continuation scheduler API routes
"""
from fastapi import APIRouter, Depends
from typing import Any, Dict

from ..models import SchedulerTickResponse
from ..dependencies import get_scheduler
from ...core.scheduler import ContinuationScheduler


router = APIRouter()


@router.post("/tick", response_model=SchedulerTickResponse)
async def tick(
    scheduler: ContinuationScheduler = Depends(get_scheduler)
) -> SchedulerTickResponse:
    """Resume due continuations now instead of waiting for the next interval"""
    resumed = await scheduler.tick()
    return SchedulerTickResponse(resumed=resumed, stats=scheduler.get_stats())


@router.get("/stats")
async def stats(
    scheduler: ContinuationScheduler = Depends(get_scheduler)
) -> Dict[str, Any]:
    return scheduler.get_stats()
