"""
Trigger queue API routes
"""
from fastapi import APIRouter, Body, Depends, Query, status
from typing import Any, Dict, Optional

from ..models import TriggerBatchResponse
from ..dependencies import get_trigger_queue
from ...core.trigger_queue import TriggerQueueProcessor


router = APIRouter()


@router.post("/events/{event}", response_model=TriggerBatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def publish_event(
    event: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    trigger_queue: TriggerQueueProcessor = Depends(get_trigger_queue)
) -> TriggerBatchResponse:
    """Queue a start for every active workflow listening to ``event``"""
    entries = await trigger_queue.enqueue_event(event, payload or {})
    return TriggerBatchResponse.from_events(entries)


@router.post("/process", response_model=TriggerBatchResponse)
async def process_queue(
    limit: Optional[int] = Query(None, ge=1, le=100, description="Batch size"),
    trigger_queue: TriggerQueueProcessor = Depends(get_trigger_queue)
) -> TriggerBatchResponse:
    """Process one batch of pending starts"""
    processed = await trigger_queue.process(limit)
    return TriggerBatchResponse.from_events(processed)
