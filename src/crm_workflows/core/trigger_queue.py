"""
Trigger queue: buffered workflow starts
"""
import asyncio
import logging
from typing import Any, Dict, List

from ..exceptions import SchedulingError
from ..models.execution import TriggerEvent, TriggerStatus, utcnow
from ..storage.repository import TriggerQueueStore, WorkflowStore
from .coordinator import ExecutionCoordinator


logger = logging.getLogger(__name__)


class TriggerQueueProcessor:
    """Queues workflow starts and drains the queue in batches"""

    def __init__(
        self,
        coordinator: ExecutionCoordinator,
        queue_store: TriggerQueueStore,
        workflow_store: WorkflowStore,
        batch_size: int = 10,
        max_retries: int = 3,
        concurrency: int = 4
    ):
        self.coordinator = coordinator
        self.queue_store = queue_store
        self.workflow_store = workflow_store
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.concurrency = max(1, concurrency)

    async def enqueue(
        self,
        workflow_id: str,
        trigger_data: Dict[str, Any] = None,
        trigger_type: str = "manual"
    ) -> TriggerEvent:
        event = TriggerEvent(
            workflow_id=workflow_id,
            trigger_data=dict(trigger_data or {}),
            trigger_type=trigger_type
        )
        await self.queue_store.enqueue(event)
        logger.info(f"Queued {trigger_type} trigger {event.id} for workflow {workflow_id}")
        return event

    async def enqueue_event(self, event: str, payload: Dict[str, Any] = None) -> List[TriggerEvent]:
        """Queue one start for every active workflow listening to ``event``"""
        workflows = await self.workflow_store.list_by_trigger(event)
        if not workflows:
            logger.info(f"No active workflows listen to '{event}'")

        return [
            await self.enqueue(workflow.id, payload, trigger_type=event)
            for workflow in workflows
        ]

    async def process(self, limit: int = None) -> List[TriggerEvent]:
        """Start the oldest pending entries; returns the entries this call handled"""
        pending = await self.queue_store.list_pending(
            limit or self.batch_size, self.max_retries
        )
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(entry: TriggerEvent):
            async with semaphore:
                return await self._process_entry(entry)

        results = await asyncio.gather(*(run(entry) for entry in pending))
        processed = [entry for entry in results if entry is not None]

        if processed:
            logger.info(f"Trigger queue: processed {len(processed)} of {len(pending)} pending entries")
        return processed

    async def _process_entry(self, entry: TriggerEvent):
        if not await self.queue_store.claim(entry.id):
            return None
        entry.status = TriggerStatus.PROCESSING

        try:
            if entry.execution_id:
                # Started earlier; only the continuation is missing
                execution = await self.coordinator.retry_suspension(entry.execution_id)
            else:
                execution = await self.coordinator.start(entry.workflow_id, entry.trigger_data)
        except SchedulingError as e:
            entry.execution_id = e.execution_id
            return await self._record_failure(entry, e)
        except Exception as e:
            return await self._record_failure(entry, e)

        entry.status = TriggerStatus.COMPLETED
        entry.execution_id = execution.id
        entry.error = None
        entry.processed_at = utcnow()
        await self.queue_store.update(entry)
        return entry

    async def _record_failure(self, entry: TriggerEvent, error: Exception) -> TriggerEvent:
        entry.retry_count += 1
        entry.error = str(error)
        if entry.retry_count < self.max_retries:
            entry.status = TriggerStatus.PENDING
            logger.warning(
                f"Trigger {entry.id} for workflow {entry.workflow_id} failed "
                f"(attempt {entry.retry_count}/{self.max_retries}): {error}"
            )
            await self.queue_store.update(entry)
            return entry

        entry.status = TriggerStatus.FAILED
        entry.processed_at = utcnow()
        logger.error(
            f"Trigger {entry.id} for workflow {entry.workflow_id} failed "
            f"after {entry.retry_count} attempts: {error}"
        )
        await self.queue_store.update(entry)

        if entry.execution_id:
            try:
                await self.coordinator.fail_execution(
                    entry.execution_id, f"Continuation could not be scheduled: {error}"
                )
            except Exception as e:
                logger.error(f"Could not fail execution {entry.execution_id}: {e}")
        return entry
