"""
Workflow API routes
"""
from fastapi import APIRouter, HTTPException, Depends, status
import logging

from ..models import (
    WorkflowDocument, WorkflowResponse, StartWorkflowRequest, EnqueueRequest,
    ExecutionResponse, TriggerEventResponse
)
from ..dependencies import get_runtime
from ...core.parser import WorkflowParser
from ...exceptions import DefinitionError, WorkflowParseError, SchedulingError
from ...runtime import Runtime


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def save_workflow(
    document: WorkflowDocument,
    runtime: Runtime = Depends(get_runtime)
) -> WorkflowResponse:
    """Create or replace a workflow"""
    try:
        workflow = WorkflowParser().parse(document.model_dump(exclude_none=True))
    except WorkflowParseError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_workflow", "message": str(e)}
        )

    errors = workflow.validate()
    if errors:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_workflow", "message": "; ".join(errors)}
        )

    await runtime.workflow_store.save(workflow)
    logger.info(f"Workflow {workflow.id} saved ({len(workflow.nodes)} nodes)")
    return WorkflowResponse.from_workflow(workflow)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    runtime: Runtime = Depends(get_runtime)
) -> WorkflowResponse:
    workflow = await runtime.workflow_store.get(workflow_id)
    if not workflow:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Workflow {workflow_id} not found"}
        )
    return WorkflowResponse.from_workflow(workflow)


@router.post("/{workflow_id}/start", response_model=ExecutionResponse)
async def start_workflow(
    workflow_id: str,
    request: StartWorkflowRequest,
    runtime: Runtime = Depends(get_runtime)
) -> ExecutionResponse:
    """Run a workflow until it completes, fails or suspends"""
    if not await runtime.workflow_store.get(workflow_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Workflow {workflow_id} not found"}
        )

    try:
        execution = await runtime.coordinator.start(workflow_id, request.context)
    except DefinitionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_workflow", "message": str(e)}
        )
    except SchedulingError as e:
        logger.error(f"Failed to suspend execution {e.execution_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "scheduling_error", "message": str(e)}
        )

    continuations = await runtime.continuation_store.list_for_execution(execution.id)
    return ExecutionResponse.from_execution(execution, continuations)


@router.post("/{workflow_id}/enqueue", response_model=TriggerEventResponse, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_workflow(
    workflow_id: str,
    request: EnqueueRequest,
    runtime: Runtime = Depends(get_runtime)
) -> TriggerEventResponse:
    """Queue a start; the trigger queue processor picks it up"""
    if not await runtime.workflow_store.get(workflow_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Workflow {workflow_id} not found"}
        )

    event = await runtime.trigger_queue.enqueue(workflow_id, request.trigger_data, request.trigger_type)
    return TriggerEventResponse.from_event(event)
