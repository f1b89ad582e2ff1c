"""
Graph definition loading
"""
import logging

from ..exceptions import DefinitionError
from ..models.workflow import Workflow
from ..storage.repository import WorkflowStore


logger = logging.getLogger(__name__)


class GraphDefinitionLoader:
    """Fetches a stored workflow and checks that it can be traversed"""

    def __init__(self, workflow_store: WorkflowStore):
        self.workflow_store = workflow_store

    async def load(self, workflow_id: str) -> Workflow:
        """Load a workflow; raises DefinitionError when missing or malformed"""
        workflow = await self.workflow_store.get(workflow_id)
        if workflow is None:
            raise DefinitionError(workflow_id, "workflow not found")

        errors = workflow.validate()
        if errors:
            logger.warning(f"Workflow {workflow_id} failed validation: {errors}")
            raise DefinitionError(workflow_id, "; ".join(errors))

        return workflow
