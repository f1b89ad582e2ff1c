"""
API request and response models
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..models.workflow import Workflow
from ..models.execution import Execution, Continuation, TriggerEvent, utcnow


class WorkflowDocument(BaseModel):
    """Workflow graph as sent by the editor"""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(None, description="Workflow ID, generated when omitted")
    name: str = Field("", description="Workflow name")
    description: Optional[str] = Field(None, description="Description")
    is_active: bool = Field(True, description="Whether events start this workflow")
    nodes: List[Dict[str, Any]] = Field(..., description="Nodes")
    edges: List[Dict[str, Any]] = Field(default_factory=list, description="Edges")


class WorkflowResponse(BaseModel):
    """Stored workflow summary"""
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool
    trigger_event: Optional[str] = None
    node_count: int
    edge_count: int

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowResponse":
        return cls(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            is_active=workflow.is_active,
            trigger_event=workflow.trigger_event(),
            node_count=len(workflow.nodes),
            edge_count=len(workflow.edges)
        )


class StartWorkflowRequest(BaseModel):
    """Start a workflow synchronously"""
    context: Dict[str, Any] = Field(default_factory=dict, description="Trigger context, e.g. {\"lead\": {...}}")


class EnqueueRequest(BaseModel):
    """Queue a workflow start"""
    trigger_data: Dict[str, Any] = Field(default_factory=dict, description="Trigger context")
    trigger_type: str = Field("manual", description="Trigger type")


class ContinuationResponse(BaseModel):
    id: str
    next_node_id: str
    run_at: datetime
    claimed_at: Optional[datetime] = None

    @classmethod
    def from_continuation(cls, continuation: Continuation) -> "ContinuationResponse":
        return cls(
            id=continuation.id,
            next_node_id=continuation.next_node_id,
            run_at=continuation.run_at,
            claimed_at=continuation.claimed_at
        )


class ExecutionResponse(BaseModel):
    """Execution state"""
    id: str
    workflow_id: str
    status: str
    context: Dict[str, Any] = Field(default_factory=dict)
    current_node_id: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    continuations: List[ContinuationResponse] = Field(default_factory=list)

    @classmethod
    def from_execution(
        cls,
        execution: Execution,
        continuations: List[Continuation] = None
    ) -> "ExecutionResponse":
        return cls(
            id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
            context=execution.context,
            current_node_id=execution.current_node_id,
            error=execution.error,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            continuations=[
                ContinuationResponse.from_continuation(c) for c in continuations or []
            ]
        )


class TriggerEventResponse(BaseModel):
    """Trigger queue entry"""
    id: str
    workflow_id: str
    trigger_type: str
    status: str
    retry_count: int
    error: Optional[str] = None
    execution_id: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: TriggerEvent) -> "TriggerEventResponse":
        return cls(
            id=event.id,
            workflow_id=event.workflow_id,
            trigger_type=event.trigger_type,
            status=event.status.value,
            retry_count=event.retry_count,
            error=event.error,
            execution_id=event.execution_id,
            created_at=event.created_at,
            processed_at=event.processed_at
        )


class TriggerBatchResponse(BaseModel):
    """Entries queued or processed by one call"""
    count: int
    entries: List[TriggerEventResponse] = Field(default_factory=list)

    @classmethod
    def from_events(cls, events: List[TriggerEvent]) -> "TriggerBatchResponse":
        return cls(
            count=len(events),
            entries=[TriggerEventResponse.from_event(e) for e in events]
        )


class SchedulerTickResponse(BaseModel):
    resumed: int = Field(..., description="Continuations resumed by this tick")
    stats: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error body"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    request_id: Optional[str] = Field(None, description="Request ID")
    timestamp: datetime = Field(default_factory=utcnow)


class HealthCheckResponse(BaseModel):
    """Health check"""
    status: str = Field(..., description="Health status", examples=["healthy", "unhealthy"])
    version: str = Field(..., description="Version")
    timestamp: datetime = Field(default_factory=utcnow)
    checks: Dict[str, bool] = Field(default_factory=dict, description="Per-component results")
