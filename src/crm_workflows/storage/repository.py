"""
Storage interfaces and in-memory implementations
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict

from ..exceptions import PersistenceError
from ..models.workflow import Workflow
from ..models.execution import (
    Execution, ExecutionStatus, Continuation, TriggerEvent, TriggerStatus
)


class WorkflowStore(ABC):
    """Workflow definition storage"""

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        pass

    @abstractmethod
    async def save(self, workflow: Workflow) -> str:
        pass

    @abstractmethod
    async def list_by_trigger(self, event: str) -> List[Workflow]:
        """Active workflows whose trigger node listens to ``event``"""
        pass


class ExecutionStore(ABC):
    """Execution storage"""

    @abstractmethod
    async def create(self, execution: Execution) -> str:
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[Execution]:
        pass

    @abstractmethod
    async def update(self, execution: Execution) -> bool:
        """
        Overwrite a stored execution.

        A cancelled execution is never overwritten: the call returns False so
        a traversal loop racing a cancel notices and stops.
        """
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        pass


class ContinuationStore(ABC):
    """
    Continuation storage.

    ``claim`` must be a conditional update that succeeds for exactly one
    concurrent caller. A claim older than ``lease_expired_before`` counts as
    abandoned and may be taken over.
    """

    @abstractmethod
    async def create(self, continuation: Continuation) -> str:
        """Persist a continuation; fails if the execution already has an unclaimed one"""
        pass

    @abstractmethod
    async def get(self, continuation_id: str) -> Optional[Continuation]:
        pass

    @abstractmethod
    async def list_due(
        self,
        now: datetime,
        lease_expired_before: Optional[datetime] = None,
        limit: int = 100
    ) -> List[Continuation]:
        pass

    @abstractmethod
    async def claim(
        self,
        continuation_id: str,
        now: datetime,
        lease_expired_before: Optional[datetime] = None
    ) -> bool:
        pass

    @abstractmethod
    async def delete(self, continuation_id: str) -> bool:
        pass

    @abstractmethod
    async def list_for_execution(self, execution_id: str) -> List[Continuation]:
        pass

    @abstractmethod
    async def delete_for_execution(self, execution_id: str) -> int:
        pass


class TriggerQueueStore(ABC):
    """Queue of pending workflow starts"""

    @abstractmethod
    async def enqueue(self, event: TriggerEvent) -> str:
        pass

    @abstractmethod
    async def get(self, event_id: str) -> Optional[TriggerEvent]:
        pass

    @abstractmethod
    async def list_pending(self, limit: int = 10, max_retries: int = 3) -> List[TriggerEvent]:
        """Oldest pending entries that have retries left"""
        pass

    @abstractmethod
    async def claim(self, event_id: str) -> bool:
        """Move an entry from pending to processing; True for exactly one caller"""
        pass

    @abstractmethod
    async def update(self, event: TriggerEvent) -> bool:
        pass


# In-memory implementations; values are copied in and out to behave like a database
class InMemoryWorkflowStore(WorkflowStore):
    """In-memory workflow store"""

    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self.workflows.get(workflow_id)
        return copy.deepcopy(workflow) if workflow else None

    async def save(self, workflow: Workflow) -> str:
        self.workflows[workflow.id] = copy.deepcopy(workflow)
        return workflow.id

    async def list_by_trigger(self, event: str) -> List[Workflow]:
        return [
            copy.deepcopy(workflow)
            for workflow in self.workflows.values()
            if workflow.is_active and workflow.trigger_event() == event
        ]


class InMemoryExecutionStore(ExecutionStore):
    """In-memory execution store"""

    def __init__(self):
        self.executions: Dict[str, Execution] = {}

    async def create(self, execution: Execution) -> str:
        if execution.id in self.executions:
            raise PersistenceError(f"Execution {execution.id} already exists")
        self.executions[execution.id] = copy.deepcopy(execution)
        return execution.id

    async def get(self, execution_id: str) -> Optional[Execution]:
        execution = self.executions.get(execution_id)
        return copy.deepcopy(execution) if execution else None

    async def update(self, execution: Execution) -> bool:
        stored = self.executions.get(execution.id)
        if stored is None or stored.status == ExecutionStatus.CANCELLED:
            return False
        self.executions[execution.id] = copy.deepcopy(execution)
        return True

    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        results = [
            copy.deepcopy(execution)
            for execution in self.executions.values()
            if execution.status == status
        ]
        return results[offset:offset + limit]


class InMemoryContinuationStore(ContinuationStore):
    """In-memory continuation store"""

    def __init__(self):
        self.continuations: Dict[str, Continuation] = {}
        self._lock = asyncio.Lock()

    async def create(self, continuation: Continuation) -> str:
        async with self._lock:
            for existing in self.continuations.values():
                if existing.execution_id == continuation.execution_id and existing.claimed_at is None:
                    raise PersistenceError(
                        f"Execution {continuation.execution_id} already has an active continuation"
                    )
            self.continuations[continuation.id] = copy.deepcopy(continuation)
        return continuation.id

    async def get(self, continuation_id: str) -> Optional[Continuation]:
        continuation = self.continuations.get(continuation_id)
        return copy.deepcopy(continuation) if continuation else None

    async def list_due(
        self,
        now: datetime,
        lease_expired_before: Optional[datetime] = None,
        limit: int = 100
    ) -> List[Continuation]:
        due = [
            continuation
            for continuation in self.continuations.values()
            if continuation.is_due(now) and continuation.is_claimable(lease_expired_before)
        ]
        due.sort(key=lambda c: c.run_at)
        return [copy.deepcopy(c) for c in due[:limit]]

    async def claim(
        self,
        continuation_id: str,
        now: datetime,
        lease_expired_before: Optional[datetime] = None
    ) -> bool:
        async with self._lock:
            continuation = self.continuations.get(continuation_id)
            if continuation is None or not continuation.is_claimable(lease_expired_before):
                return False
            continuation.claimed_at = now
            return True

    async def delete(self, continuation_id: str) -> bool:
        async with self._lock:
            return self.continuations.pop(continuation_id, None) is not None

    async def list_for_execution(self, execution_id: str) -> List[Continuation]:
        return [
            copy.deepcopy(c) for c in self.continuations.values()
            if c.execution_id == execution_id
        ]

    async def delete_for_execution(self, execution_id: str) -> int:
        async with self._lock:
            doomed = [cid for cid, c in self.continuations.items() if c.execution_id == execution_id]
            for cid in doomed:
                del self.continuations[cid]
            return len(doomed)


class InMemoryTriggerQueueStore(TriggerQueueStore):
    """In-memory trigger queue"""

    def __init__(self):
        self.events: Dict[str, TriggerEvent] = {}
        self._lock = asyncio.Lock()

    async def enqueue(self, event: TriggerEvent) -> str:
        self.events[event.id] = copy.deepcopy(event)
        return event.id

    async def get(self, event_id: str) -> Optional[TriggerEvent]:
        event = self.events.get(event_id)
        return copy.deepcopy(event) if event else None

    async def list_pending(self, limit: int = 10, max_retries: int = 3) -> List[TriggerEvent]:
        pending = [
            event for event in self.events.values()
            if event.status == TriggerStatus.PENDING and event.retry_count < max_retries
        ]
        pending.sort(key=lambda e: e.created_at)
        return [copy.deepcopy(e) for e in pending[:limit]]

    async def claim(self, event_id: str) -> bool:
        async with self._lock:
            event = self.events.get(event_id)
            if event is None or event.status != TriggerStatus.PENDING:
                return False
            event.status = TriggerStatus.PROCESSING
            return True

    async def update(self, event: TriggerEvent) -> bool:
        if event.id not in self.events:
            return False
        self.events[event.id] = copy.deepcopy(event)
        return True
