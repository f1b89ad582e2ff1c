"""Core workflow engine components"""

from .interpolation import interpolate, interpolate_json, resolve_path
from .dispatcher import NodeActionDispatcher, evaluate_condition
from .parser import WorkflowParser
from .loader import GraphDefinitionLoader
from .coordinator import ExecutionCoordinator
from .scheduler import ContinuationScheduler
from .trigger_queue import TriggerQueueProcessor
from .retry import RetryPolicy, call_with_retry

__all__ = [
    "interpolate",
    "interpolate_json",
    "resolve_path",
    "NodeActionDispatcher",
    "evaluate_condition",
    "WorkflowParser",
    "GraphDefinitionLoader",
    "ExecutionCoordinator",
    "ContinuationScheduler",
    "TriggerQueueProcessor",
    "RetryPolicy",
    "call_with_retry"
]
