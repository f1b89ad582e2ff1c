"""
Component wiring shared by the API, the CLI and tests
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import Settings
from .core.coordinator import ExecutionCoordinator
from .core.dispatcher import NodeActionDispatcher
from .core.loader import GraphDefinitionLoader
from .core.scheduler import ContinuationScheduler
from .core.trigger_queue import TriggerQueueProcessor
from .integrations import (
    EventBus, HttpxHttpCaller, LoggingEmailSender, LoggingSmsSender,
    InMemoryRecordStore, InMemoryTaskStore
)
from .integrations.capabilities import RecordStore, TaskStore
from .storage.repository import (
    WorkflowStore, ExecutionStore, ContinuationStore, TriggerQueueStore,
    InMemoryWorkflowStore, InMemoryExecutionStore, InMemoryContinuationStore,
    InMemoryTriggerQueueStore
)
from .storage.sqlalchemy_repository import (
    DatabaseManager, SQLAlchemyWorkflowStore, SQLAlchemyExecutionStore,
    SQLAlchemyContinuationStore, SQLAlchemyTriggerQueueStore,
    SQLAlchemyRecordStore, SQLAlchemyTaskStore
)


logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything needed to start, resume and queue executions"""
    settings: Settings
    workflow_store: WorkflowStore
    execution_store: ExecutionStore
    continuation_store: ContinuationStore
    queue_store: TriggerQueueStore
    record_store: RecordStore
    task_store: TaskStore
    event_bus: EventBus
    coordinator: ExecutionCoordinator
    scheduler: ContinuationScheduler
    trigger_queue: TriggerQueueProcessor
    email_sender: LoggingEmailSender = None
    sms_sender: LoggingSmsSender = None
    http_caller: Optional[HttpxHttpCaller] = None
    db_manager: Optional[DatabaseManager] = field(default=None, repr=False)

    async def close(self):
        await self.scheduler.stop()
        if self.http_caller:
            await self.http_caller.close()
        if self.db_manager:
            await self.db_manager.close()


def _assemble(
    settings: Settings,
    workflow_store: WorkflowStore,
    execution_store: ExecutionStore,
    continuation_store: ContinuationStore,
    queue_store: TriggerQueueStore,
    record_store: RecordStore,
    task_store: TaskStore,
    db_manager=None
) -> Runtime:
    event_bus = EventBus()
    email_sender = LoggingEmailSender(settings.email_from)
    sms_sender = LoggingSmsSender(settings.sms_originator)
    http_caller = HttpxHttpCaller(timeout=settings.capability_timeout)

    dispatcher = NodeActionDispatcher(
        email_sender=email_sender,
        sms_sender=sms_sender,
        http_caller=http_caller,
        record_store=record_store,
        task_store=task_store,
        retry_policy=settings.retry_policy()
    )
    coordinator = ExecutionCoordinator(
        loader=GraphDefinitionLoader(workflow_store),
        dispatcher=dispatcher,
        execution_store=execution_store,
        continuation_store=continuation_store,
        event_bus=event_bus
    )
    scheduler = ContinuationScheduler(
        coordinator,
        continuation_store,
        execution_store,
        interval=settings.scheduler_interval,
        lease_seconds=settings.continuation_lease_seconds,
        batch_size=settings.scheduler_batch_size
    )
    trigger_queue = TriggerQueueProcessor(
        coordinator,
        queue_store,
        workflow_store,
        batch_size=settings.trigger_queue_batch_size,
        max_retries=settings.trigger_queue_max_retries,
        concurrency=settings.trigger_queue_concurrency
    )

    return Runtime(
        settings=settings,
        workflow_store=workflow_store,
        execution_store=execution_store,
        continuation_store=continuation_store,
        queue_store=queue_store,
        record_store=record_store,
        task_store=task_store,
        event_bus=event_bus,
        coordinator=coordinator,
        scheduler=scheduler,
        trigger_queue=trigger_queue,
        email_sender=email_sender,
        sms_sender=sms_sender,
        http_caller=http_caller,
        db_manager=db_manager
    )


async def build_runtime(settings: Settings) -> Runtime:
    """Database backed runtime for ``settings.database_url``"""
    db_manager = DatabaseManager(settings.database_url)
    await db_manager.initialize()

    return _assemble(
        settings,
        workflow_store=SQLAlchemyWorkflowStore(db_manager),
        execution_store=SQLAlchemyExecutionStore(db_manager),
        continuation_store=SQLAlchemyContinuationStore(db_manager),
        queue_store=SQLAlchemyTriggerQueueStore(db_manager),
        record_store=SQLAlchemyRecordStore(db_manager),
        task_store=SQLAlchemyTaskStore(db_manager),
        db_manager=db_manager
    )


def build_in_memory_runtime(settings: Settings = None) -> Runtime:
    """Runtime without a database, for local runs"""
    return _assemble(
        settings or Settings(),
        workflow_store=InMemoryWorkflowStore(),
        execution_store=InMemoryExecutionStore(),
        continuation_store=InMemoryContinuationStore(),
        queue_store=InMemoryTriggerQueueStore(),
        record_store=InMemoryRecordStore(),
        task_store=InMemoryTaskStore()
    )
