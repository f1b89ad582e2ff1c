"""
Workflow engine exceptions
"""


class WorkflowEngineError(Exception):
    """Base exception for the workflow engine"""
    pass


class DefinitionError(WorkflowEngineError):
    """Workflow is missing or its graph is malformed"""

    def __init__(self, workflow_id: str, message: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' is invalid: {message}")


class WorkflowParseError(WorkflowEngineError):
    """Workflow document could not be parsed"""
    pass


class DispatchError(WorkflowEngineError):
    """A node's side effect failed"""

    def __init__(self, node_id: str, message: str, cause: Exception = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(message)


class InterpolationError(WorkflowEngineError):
    """Never raised by interpolation; unresolved tokens are left verbatim"""
    pass


class SchedulingError(WorkflowEngineError):
    """A continuation could not be persisted"""

    def __init__(self, execution_id: str, message: str, cause: Exception = None):
        self.execution_id = execution_id
        self.cause = cause
        super().__init__(f"Execution '{execution_id}' could not be suspended: {message}")


class ExecutionNotFoundError(WorkflowEngineError):
    """Execution does not exist"""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class StateTransitionError(WorkflowEngineError):
    """Invalid execution state transition"""

    def __init__(self, current_state: str, target_state: str, message: str = None):
        self.current_state = current_state
        self.target_state = target_state
        msg = f"Invalid state transition from '{current_state}' to '{target_state}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class PersistenceError(WorkflowEngineError):
    """Storage layer failure"""
    pass
