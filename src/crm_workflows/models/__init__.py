"""Workflow and execution models"""

from .workflow import (
    Workflow, Node, Edge, NodeKind, ActionType, ACTION_TYPE_ALIASES, resolve_action_type
)
from .execution import (
    Execution, ExecutionStatus, TERMINAL_STATUSES, Continuation, DispatchResult,
    TriggerEvent, TriggerStatus, ExecutionEvent, ExecutionEventType, utcnow
)

__all__ = [
    "Workflow",
    "Node",
    "Edge",
    "NodeKind",
    "ActionType",
    "ACTION_TYPE_ALIASES",
    "resolve_action_type",
    "Execution",
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "Continuation",
    "DispatchResult",
    "TriggerEvent",
    "TriggerStatus",
    "ExecutionEvent",
    "ExecutionEventType",
    "utcnow"
]
