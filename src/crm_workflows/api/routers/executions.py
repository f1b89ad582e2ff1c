"""
Execution API routes
"""
from fastapi import APIRouter, HTTPException, Depends, status
import logging

from ..models import ExecutionResponse
from ..dependencies import get_runtime
from ...exceptions import ExecutionNotFoundError, StateTransitionError
from ...runtime import Runtime


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    runtime: Runtime = Depends(get_runtime)
) -> ExecutionResponse:
    execution = await runtime.execution_store.get(execution_id)
    if not execution:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Execution {execution_id} not found"}
        )

    continuations = await runtime.continuation_store.list_for_execution(execution_id)
    return ExecutionResponse.from_execution(execution, continuations)


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    runtime: Runtime = Depends(get_runtime)
) -> ExecutionResponse:
    """Cancel a running or suspended execution"""
    try:
        execution = await runtime.coordinator.cancel(execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": str(e)}
        )
    except StateTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "invalid_state", "message": str(e)}
        )

    return ExecutionResponse.from_execution(execution)
