"""
CRM workflow automation engine
"""

__version__ = "1.0.0"

from .core.coordinator import ExecutionCoordinator
from .core.scheduler import ContinuationScheduler
from .core.dispatcher import NodeActionDispatcher
from .core.loader import GraphDefinitionLoader
from .core.parser import WorkflowParser
from .models.workflow import Workflow, Node, Edge
from .models.execution import Execution, Continuation

__all__ = [
    "ExecutionCoordinator",
    "ContinuationScheduler",
    "NodeActionDispatcher",
    "GraphDefinitionLoader",
    "WorkflowParser",
    "Workflow",
    "Node",
    "Edge",
    "Execution",
    "Continuation"
]
