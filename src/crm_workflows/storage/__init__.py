"""Storage interfaces and in-memory stores"""

from .repository import (
    WorkflowStore,
    ExecutionStore,
    ContinuationStore,
    TriggerQueueStore,
    InMemoryWorkflowStore,
    InMemoryExecutionStore,
    InMemoryContinuationStore,
    InMemoryTriggerQueueStore
)

__all__ = [
    "WorkflowStore",
    "ExecutionStore",
    "ContinuationStore",
    "TriggerQueueStore",
    "InMemoryWorkflowStore",
    "InMemoryExecutionStore",
    "InMemoryContinuationStore",
    "InMemoryTriggerQueueStore"
]
