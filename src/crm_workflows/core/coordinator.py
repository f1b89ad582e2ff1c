"""
Execution coordinator: the node-to-node traversal state machine
"""
import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..exceptions import (
    DefinitionError, ExecutionNotFoundError, SchedulingError, StateTransitionError
)
from ..models.workflow import Workflow, Node
from ..models.execution import (
    Execution, ExecutionStatus, Continuation, ExecutionEvent, ExecutionEventType, utcnow
)
from ..storage.repository import ExecutionStore, ContinuationStore
from ..integrations.event_bus import EventBus, EXECUTION_TOPIC, NODE_TOPIC
from .dispatcher import NodeActionDispatcher
from .durations import due_from_now
from .loader import GraphDefinitionLoader
from .retry import RetryPolicy, call_with_retry


logger = logging.getLogger(__name__)

BRANCH_YES = "yes"
BRANCH_NO = "no"


class ExecutionCoordinator:
    """
    Drives executions through their workflow graph.

    An execution is ``running`` until it reaches a node without an outgoing
    edge (``completed``), a dispatch fails (``failed``) or it is cancelled.
    A wait node persists a Continuation and returns while the execution stays
    ``running``; the ContinuationScheduler later calls ``resume``.
    """

    def __init__(
        self,
        loader: GraphDefinitionLoader,
        dispatcher: NodeActionDispatcher,
        execution_store: ExecutionStore,
        continuation_store: ContinuationStore,
        event_bus: EventBus = None,
        clock: Callable[[], datetime] = utcnow,
        suspend_policy: RetryPolicy = None
    ):
        self.loader = loader
        self.dispatcher = dispatcher
        self.execution_store = execution_store
        self.continuation_store = continuation_store
        self.event_bus = event_bus or EventBus()
        self.clock = clock
        self.suspend_policy = suspend_policy or RetryPolicy(max_attempts=3, initial_delay=0.1, max_delay=1.0)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def start(self, workflow_id: str, trigger_context: Dict[str, Any] = None) -> Execution:
        """Start a workflow; raises DefinitionError before creating anything if the graph is unusable"""
        workflow = await self.loader.load(workflow_id)
        trigger = workflow.trigger_nodes()[0]

        execution = Execution(
            workflow_id=workflow.id,
            context=copy.deepcopy(trigger_context or {}),
            current_node_id=trigger.id
        )
        await self.execution_store.create(execution)
        logger.info(f"Execution {execution.id} started for workflow {workflow.id}")
        await self._publish_execution_event(execution, ExecutionEventType.WORKFLOW_STARTED)

        async with self._execution_lock(execution.id):
            return await self._run(workflow, execution, trigger.id)

    async def resume(
        self,
        execution_id: str,
        node_id: str,
        context: Optional[Dict[str, Any]] = None
    ) -> Execution:
        """Continue a suspended execution at ``node_id``"""
        async with self._execution_lock(execution_id):
            execution = await self.execution_store.get(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)

            if execution.is_terminal_state():
                logger.info(
                    f"Execution {execution_id} is {execution.status.value}, not resuming"
                )
                return execution

            try:
                workflow = await self.loader.load(execution.workflow_id)
            except DefinitionError as e:
                return await self._fail(execution, str(e))

            if context is not None:
                execution.merge_context(copy.deepcopy(context))

            logger.info(f"Execution {execution_id} resuming at node {node_id}")
            await self._publish_execution_event(
                execution, ExecutionEventType.WORKFLOW_RESUMED, {"node_id": node_id}
            )
            return await self._run(workflow, execution, node_id)

    async def retry_suspension(self, execution_id: str) -> Execution:
        """
        Write the continuation a failed suspension left out.

        The execution must still be ``running`` at its wait node. The delay is
        measured from now and the continuation carries the stored context.
        Raises SchedulingError again if the write keeps failing.
        """
        async with self._execution_lock(execution_id):
            execution = await self.execution_store.get(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)

            if execution.is_terminal_state():
                return execution

            pending = await self.continuation_store.list_for_execution(execution_id)
            if any(c.claimed_at is None for c in pending):
                logger.info(f"Execution {execution_id} already has a pending continuation")
                return execution

            try:
                workflow = await self.loader.load(execution.workflow_id)
            except DefinitionError as e:
                return await self._fail(execution, str(e))

            node = workflow.get_node(execution.current_node_id)
            if node is None or not node.is_wait:
                return await self._fail(
                    execution,
                    f"Execution is at '{execution.current_node_id}', not at a wait node"
                )

            logger.info(f"Execution {execution_id} retrying suspension at {node.id}")
            return await self._suspend(workflow, execution, node)

    async def fail_execution(self, execution_id: str, error: str) -> Execution:
        """Mark a running execution failed and drop its continuations"""
        async with self._execution_lock(execution_id):
            execution = await self.execution_store.get(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)

            if execution.is_terminal_state():
                return execution

            await self.continuation_store.delete_for_execution(execution_id)
            return await self._fail(execution, error)

    async def cancel(self, execution_id: str) -> Execution:
        """Cancel a running execution and drop its pending continuations"""
        execution = await self.execution_store.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        if execution.is_terminal_state():
            raise StateTransitionError(
                execution.status.value,
                ExecutionStatus.CANCELLED.value,
                "execution already finished"
            )

        execution.cancel()
        await self.execution_store.update(execution)
        dropped = await self.continuation_store.delete_for_execution(execution_id)

        logger.info(f"Execution {execution_id} cancelled ({dropped} continuation(s) dropped)")
        await self._publish_execution_event(execution, ExecutionEventType.WORKFLOW_CANCELLED)
        return execution

    async def _run(self, workflow: Workflow, execution: Execution, node_id: str) -> Execution:
        """Traversal loop"""
        while True:
            stored = await self.execution_store.get(execution.id)
            if stored is None or stored.status == ExecutionStatus.CANCELLED:
                logger.info(f"Execution {execution.id} was cancelled, stopping before node {node_id}")
                return stored or execution

            node = workflow.get_node(node_id)
            if node is None:
                return await self._fail(execution, f"Node '{node_id}' not found in workflow {workflow.id}")

            execution.current_node_id = node.id

            if node.is_wait:
                return await self._suspend(workflow, execution, node)

            if node.is_trigger:
                delta: Dict[str, Any] = {}
            else:
                await self._publish_node_event(execution, node, ExecutionEventType.NODE_STARTED)
                result = await self.dispatcher.dispatch(node, execution.context)

                if not result.success:
                    await self._publish_node_event(
                        execution, node, ExecutionEventType.NODE_FAILED, {"error": result.error}
                    )
                    return await self._fail(execution, result.error or f"Node {node.id} failed")

                delta = result.data
                execution.merge_context(delta)
                await self._publish_node_event(
                    execution, node, ExecutionEventType.NODE_COMPLETED, {"data": delta}
                )

            try:
                next_node_id = self._next_node_id(workflow, node, delta)
            except DefinitionError as e:
                return await self._fail(execution, str(e))

            if next_node_id is None:
                return await self._complete(execution)

            execution.current_node_id = next_node_id
            if not await self._persist(execution):
                return await self._reload(execution)
            node_id = next_node_id

    def _next_node_id(self, workflow: Workflow, node: Node, delta: Dict[str, Any]) -> Optional[str]:
        edges = workflow.outgoing_edges(node.id)

        if node.is_condition:
            label = BRANCH_YES if delta.get("conditionMet") else BRANCH_NO
            matches = [
                edge for edge in edges
                if (edge.branch_label or "").strip().lower() == label
            ]
            if len(matches) != 1:
                raise DefinitionError(
                    workflow.id,
                    f"condition node '{node.id}' has {len(matches)} edges labeled '{label}', expected exactly one"
                )
            return matches[0].target

        if not edges:
            return None
        if len(edges) > 1:
            raise DefinitionError(
                workflow.id, f"node '{node.id}' has {len(edges)} outgoing edges, expected at most one"
            )
        return edges[0].target

    async def _suspend(self, workflow: Workflow, execution: Execution, node: Node) -> Execution:
        """Persist a continuation for the node after ``node`` and stop the loop"""
        try:
            next_node_id = self._next_node_id(workflow, node, {})
        except DefinitionError as e:
            return await self._fail(execution, str(e))

        if next_node_id is None:
            return await self._complete(execution)

        continuation = Continuation(
            execution_id=execution.id,
            next_node_id=next_node_id,
            run_at=due_from_now(node.config.get('delay'), self.clock()),
            context=copy.deepcopy(execution.context)
        )

        try:
            await call_with_retry(
                lambda: self.continuation_store.create(continuation),
                self.suspend_policy,
                f"Continuation for execution {execution.id}"
            )
        except Exception as e:
            # Leave the execution at the wait node so the suspension can be retried
            await self._persist(execution)
            raise SchedulingError(execution.id, str(e), e) from e

        if not await self._persist(execution):
            await self.continuation_store.delete(continuation.id)
            return await self._reload(execution)

        logger.info(
            f"Execution {execution.id} suspended at {node.id}, "
            f"resuming at {next_node_id} after {continuation.run_at.isoformat()}"
        )
        await self._publish_execution_event(
            execution,
            ExecutionEventType.WORKFLOW_SUSPENDED,
            {
                "continuation_id": continuation.id,
                "next_node_id": next_node_id,
                "run_at": continuation.run_at.isoformat()
            }
        )
        return execution

    async def _complete(self, execution: Execution) -> Execution:
        execution.complete()
        if not await self._persist(execution):
            return await self._reload(execution)
        logger.info(f"Execution {execution.id} completed")
        await self._publish_execution_event(execution, ExecutionEventType.WORKFLOW_COMPLETED)
        return execution

    async def _fail(self, execution: Execution, error: str) -> Execution:
        execution.fail(error)
        if not await self._persist(execution):
            return await self._reload(execution)
        logger.warning(f"Execution {execution.id} failed: {error}")
        await self._publish_execution_event(
            execution, ExecutionEventType.WORKFLOW_FAILED, {"error": execution.error}
        )
        return execution

    async def _persist(self, execution: Execution) -> bool:
        """Write progress; False when the stored execution was cancelled meanwhile"""
        return await self.execution_store.update(execution)

    async def _reload(self, execution: Execution) -> Execution:
        stored = await self.execution_store.get(execution.id)
        return stored or execution

    @asynccontextmanager
    async def _execution_lock(self, execution_id: str):
        """One traversal loop per execution at a time"""
        lock = self._locks.setdefault(execution_id, asyncio.Lock())
        # Holders and waiters; the entry goes away only when the last one leaves
        self._lock_users[execution_id] = self._lock_users.get(execution_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[execution_id] -= 1
            if self._lock_users[execution_id] == 0:
                del self._lock_users[execution_id]
                del self._locks[execution_id]

    async def _publish_execution_event(
        self,
        execution: Execution,
        event_type: ExecutionEventType,
        data: Dict[str, Any] = None
    ):
        event = ExecutionEvent(
            execution_id=execution.id,
            event_type=event_type.value,
            node_id=execution.current_node_id,
            data={"workflow_id": execution.workflow_id, "status": execution.status.value, **(data or {})}
        )
        await self.event_bus.publish(EXECUTION_TOPIC, event)

    async def _publish_node_event(
        self,
        execution: Execution,
        node: Node,
        event_type: ExecutionEventType,
        data: Dict[str, Any] = None
    ):
        event = ExecutionEvent(
            execution_id=execution.id,
            event_type=event_type.value,
            node_id=node.id,
            data=data or {}
        )
        await self.event_bus.publish(NODE_TOPIC, event)
