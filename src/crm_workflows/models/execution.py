"""
Execution, continuation and trigger queue models
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExecutionStatus(Enum):
    """Workflow execution status"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})


@dataclass
class Execution:
    """One run of a workflow"""
    id: str = field(default_factory=lambda: str(uuid4()))
    workflow_id: str = ""
    status: ExecutionStatus = ExecutionStatus.RUNNING
    context: Dict[str, Any] = field(default_factory=dict)
    current_node_id: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def merge_context(self, delta: Dict[str, Any]):
        """Merge a node's output into the context, new keys win"""
        if delta:
            self.context = {**self.context, **delta}
        self.updated_at = utcnow()

    def complete(self):
        self.status = ExecutionStatus.COMPLETED
        self.completed_at = utcnow()
        self.updated_at = self.completed_at

    def fail(self, error: str):
        self.status = ExecutionStatus.FAILED
        self.error = error or "Unknown error"
        self.completed_at = utcnow()
        self.updated_at = self.completed_at

    def cancel(self):
        self.status = ExecutionStatus.CANCELLED
        self.completed_at = utcnow()
        self.updated_at = self.completed_at

    def is_terminal_state(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "context": self.context,
            "current_node_id": self.current_node_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


@dataclass
class Continuation:
    """Resume an execution at a node, with a context, no earlier than run_at"""
    execution_id: str
    next_node_id: str
    run_at: datetime
    context: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    claimed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_due(self, now: datetime) -> bool:
        return self.run_at <= now

    def is_claimable(self, lease_expired_before: Optional[datetime] = None) -> bool:
        """Unclaimed, or claimed by a holder whose lease ran out"""
        if self.claimed_at is None:
            return True
        return lease_expired_before is not None and self.claimed_at <= lease_expired_before


@dataclass
class DispatchResult:
    """Outcome of dispatching one node"""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Dict[str, Any] = None) -> "DispatchResult":
        return cls(success=True, data=data or {})

    @classmethod
    def failed(cls, error: str) -> "DispatchResult":
        return cls(success=False, error=error)


class TriggerStatus(Enum):
    """Trigger queue entry status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TriggerEvent:
    """Queued request to start a workflow"""
    workflow_id: str
    trigger_data: Dict[str, Any] = field(default_factory=dict)
    trigger_type: str = "manual"
    id: str = field(default_factory=lambda: str(uuid4()))
    status: TriggerStatus = TriggerStatus.PENDING
    retry_count: int = 0
    error: Optional[str] = None
    execution_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


class ExecutionEventType(Enum):
    """Events published while executions progress"""
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_SUSPENDED = "workflow_suspended"
    WORKFLOW_RESUMED = "workflow_resumed"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_CANCELLED = "workflow_cancelled"

    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"


@dataclass
class ExecutionEvent:
    """Execution event"""
    execution_id: str
    event_type: str
    node_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)
