"""
SQLAlchemy store implementations
"""
import logging
from typing import Optional, List, Dict, Any
from datetime import datetime
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy import select, update, delete, and_, or_, Float, Integer
from sqlalchemy.exc import IntegrityError

from ..exceptions import PersistenceError
from ..models.workflow import Workflow
from ..models.execution import (
    Execution, ExecutionStatus, Continuation, TriggerEvent, TriggerStatus
)
from ..integrations.capabilities import RecordStore, TaskStore
from ..core.parser import WorkflowParser
from .repository import WorkflowStore, ExecutionStore, ContinuationStore, TriggerQueueStore
from .sqlalchemy_models import (
    WorkflowDefinition as WorkflowDefinitionDB,
    WorkflowExecution as WorkflowExecutionDB,
    WorkflowContinuation as WorkflowContinuationDB,
    TriggerQueueEntry as TriggerQueueEntryDB,
    LeadRecord as LeadRecordDB,
    TaskRecord as TaskRecordDB,
    Base
)


logger = logging.getLogger(__name__)


class DatabaseManager:
    """Engine and session factory"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self, create_tables: bool = True):
        """Open the engine and create missing tables"""
        engine_kwargs: Dict[str, Any] = {"echo": self.echo}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.database_url or self.database_url.endswith("://"):
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)

        self.engine = create_async_engine(self.database_url, **engine_kwargs)

        self.async_session_maker = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized ({self.engine.url.render_as_string(hide_password=True)})")

    async def close(self):
        if self.engine:
            await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self):
        """Session that commits on success and rolls back on error"""
        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class SQLAlchemyWorkflowStore(WorkflowStore):
    """Workflow definitions stored as JSON documents"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.parser = WorkflowParser()

    async def save(self, workflow: Workflow) -> str:
        values = {
            "name": workflow.name,
            "description": workflow.description,
            "definition": self.parser.to_dict(workflow),
            "trigger_event": workflow.trigger_event(),
            "is_active": workflow.is_active,
        }
        async with self.db.get_session() as session:
            existing = await session.get(WorkflowDefinitionDB, workflow.id)
            if existing:
                for key, value in values.items():
                    setattr(existing, key, value)
            else:
                session.add(WorkflowDefinitionDB(id=workflow.id, **values))
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        async with self.db.get_session() as session:
            workflow_db = await session.get(WorkflowDefinitionDB, workflow_id)
            if not workflow_db:
                return None
            return self._db_to_workflow(workflow_db)

    async def list_by_trigger(self, event: str) -> List[Workflow]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowDefinitionDB)
                .where(
                    and_(
                        WorkflowDefinitionDB.trigger_event == event,
                        WorkflowDefinitionDB.is_active.is_(True)
                    )
                )
                .order_by(WorkflowDefinitionDB.created_at)
            )
            return [self._db_to_workflow(w) for w in result.scalars().all()]

    def _db_to_workflow(self, workflow_db: WorkflowDefinitionDB) -> Workflow:
        definition = dict(workflow_db.definition or {})
        definition.update(
            id=workflow_db.id,
            name=workflow_db.name,
            is_active=workflow_db.is_active
        )
        if workflow_db.description is not None:
            definition["description"] = workflow_db.description
        return self.parser.parse(definition)


class SQLAlchemyExecutionStore(ExecutionStore):
    """Execution rows; updates never overwrite a cancelled execution"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create(self, execution: Execution) -> str:
        try:
            async with self.db.get_session() as session:
                session.add(WorkflowExecutionDB(id=execution.id, **self._values(execution)))
        except IntegrityError as e:
            raise PersistenceError(f"Failed to create execution {execution.id}: {e.orig}") from e
        return execution.id

    async def get(self, execution_id: str) -> Optional[Execution]:
        async with self.db.get_session() as session:
            execution_db = await session.get(WorkflowExecutionDB, execution_id)
            if not execution_db:
                return None
            return self._db_to_execution(execution_db)

    async def update(self, execution: Execution) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(WorkflowExecutionDB)
                .where(
                    and_(
                        WorkflowExecutionDB.id == execution.id,
                        WorkflowExecutionDB.status != ExecutionStatus.CANCELLED.value
                    )
                )
                .values(**self._values(execution))
            )
            return result.rowcount == 1

    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowExecutionDB)
                .where(WorkflowExecutionDB.status == status.value)
                .order_by(WorkflowExecutionDB.started_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return [self._db_to_execution(e) for e in result.scalars().all()]

    def _values(self, execution: Execution) -> Dict[str, Any]:
        return {
            "workflow_id": execution.workflow_id,
            "status": execution.status.value,
            "context": execution.context,
            "current_node_id": execution.current_node_id,
            "error": execution.error,
            "started_at": execution.started_at,
            "completed_at": execution.completed_at,
            "updated_at": execution.updated_at,
        }

    def _db_to_execution(self, execution_db: WorkflowExecutionDB) -> Execution:
        return Execution(
            id=execution_db.id,
            workflow_id=execution_db.workflow_id,
            status=ExecutionStatus(execution_db.status),
            context=execution_db.context or {},
            current_node_id=execution_db.current_node_id,
            started_at=execution_db.started_at,
            completed_at=execution_db.completed_at,
            error=execution_db.error,
            updated_at=execution_db.updated_at
        )


class SQLAlchemyContinuationStore(ContinuationStore):
    """
    Continuation rows.

    Claims are single conditional UPDATE statements; the partial unique index
    on ``execution_id`` rejects a second unclaimed continuation.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create(self, continuation: Continuation) -> str:
        try:
            async with self.db.get_session() as session:
                session.add(WorkflowContinuationDB(
                    id=continuation.id,
                    execution_id=continuation.execution_id,
                    next_node_id=continuation.next_node_id,
                    run_at=continuation.run_at,
                    context=continuation.context,
                    claimed_at=continuation.claimed_at,
                    created_at=continuation.created_at
                ))
        except IntegrityError as e:
            raise PersistenceError(
                f"Failed to create continuation for execution {continuation.execution_id}: {e.orig}"
            ) from e
        return continuation.id

    async def get(self, continuation_id: str) -> Optional[Continuation]:
        async with self.db.get_session() as session:
            continuation_db = await session.get(WorkflowContinuationDB, continuation_id)
            if not continuation_db:
                return None
            return self._db_to_continuation(continuation_db)

    async def list_due(
        self,
        now: datetime,
        lease_expired_before: Optional[datetime] = None,
        limit: int = 100
    ) -> List[Continuation]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowContinuationDB)
                .where(
                    and_(
                        WorkflowContinuationDB.run_at <= now,
                        self._claimable(lease_expired_before)
                    )
                )
                .order_by(WorkflowContinuationDB.run_at)
                .limit(limit)
            )
            return [self._db_to_continuation(c) for c in result.scalars().all()]

    async def claim(
        self,
        continuation_id: str,
        now: datetime,
        lease_expired_before: Optional[datetime] = None
    ) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(WorkflowContinuationDB)
                .where(
                    and_(
                        WorkflowContinuationDB.id == continuation_id,
                        self._claimable(lease_expired_before)
                    )
                )
                .values(claimed_at=now)
            )
            return result.rowcount == 1

    async def delete(self, continuation_id: str) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(WorkflowContinuationDB).where(WorkflowContinuationDB.id == continuation_id)
            )
            return result.rowcount > 0

    async def list_for_execution(self, execution_id: str) -> List[Continuation]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowContinuationDB)
                .where(WorkflowContinuationDB.execution_id == execution_id)
                .order_by(WorkflowContinuationDB.created_at)
            )
            return [self._db_to_continuation(c) for c in result.scalars().all()]

    async def delete_for_execution(self, execution_id: str) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(WorkflowContinuationDB).where(WorkflowContinuationDB.execution_id == execution_id)
            )
            return result.rowcount

    def _claimable(self, lease_expired_before: Optional[datetime]):
        if lease_expired_before is None:
            return WorkflowContinuationDB.claimed_at.is_(None)
        return or_(
            WorkflowContinuationDB.claimed_at.is_(None),
            WorkflowContinuationDB.claimed_at <= lease_expired_before
        )

    def _db_to_continuation(self, continuation_db: WorkflowContinuationDB) -> Continuation:
        return Continuation(
            id=continuation_db.id,
            execution_id=continuation_db.execution_id,
            next_node_id=continuation_db.next_node_id,
            run_at=continuation_db.run_at,
            context=continuation_db.context or {},
            claimed_at=continuation_db.claimed_at,
            created_at=continuation_db.created_at
        )


class SQLAlchemyTriggerQueueStore(TriggerQueueStore):
    """Trigger queue rows"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def enqueue(self, event: TriggerEvent) -> str:
        async with self.db.get_session() as session:
            session.add(TriggerQueueEntryDB(id=event.id, **self._values(event)))
        return event.id

    async def get(self, event_id: str) -> Optional[TriggerEvent]:
        async with self.db.get_session() as session:
            entry_db = await session.get(TriggerQueueEntryDB, event_id)
            if not entry_db:
                return None
            return self._db_to_event(entry_db)

    async def list_pending(self, limit: int = 10, max_retries: int = 3) -> List[TriggerEvent]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(TriggerQueueEntryDB)
                .where(
                    and_(
                        TriggerQueueEntryDB.status == TriggerStatus.PENDING.value,
                        TriggerQueueEntryDB.retry_count < max_retries
                    )
                )
                .order_by(TriggerQueueEntryDB.created_at)
                .limit(limit)
            )
            return [self._db_to_event(e) for e in result.scalars().all()]

    async def claim(self, event_id: str) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(TriggerQueueEntryDB)
                .where(
                    and_(
                        TriggerQueueEntryDB.id == event_id,
                        TriggerQueueEntryDB.status == TriggerStatus.PENDING.value
                    )
                )
                .values(status=TriggerStatus.PROCESSING.value)
            )
            return result.rowcount == 1

    async def update(self, event: TriggerEvent) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(TriggerQueueEntryDB)
                .where(TriggerQueueEntryDB.id == event.id)
                .values(**self._values(event))
            )
            return result.rowcount == 1

    def _values(self, event: TriggerEvent) -> Dict[str, Any]:
        return {
            "workflow_id": event.workflow_id,
            "trigger_type": event.trigger_type,
            "trigger_data": event.trigger_data,
            "status": event.status.value,
            "retry_count": event.retry_count,
            "error": event.error,
            "execution_id": event.execution_id,
            "created_at": event.created_at,
            "processed_at": event.processed_at,
        }

    def _db_to_event(self, entry_db: TriggerQueueEntryDB) -> TriggerEvent:
        return TriggerEvent(
            id=entry_db.id,
            workflow_id=entry_db.workflow_id,
            trigger_type=entry_db.trigger_type,
            trigger_data=entry_db.trigger_data or {},
            status=TriggerStatus(entry_db.status),
            retry_count=entry_db.retry_count,
            error=entry_db.error,
            execution_id=entry_db.execution_id,
            created_at=entry_db.created_at,
            processed_at=entry_db.processed_at
        )


class SQLAlchemyRecordStore(RecordStore):
    """Lead rows; numeric deltas are applied as ``SET field = field + delta``"""

    ASSIGNABLE_FIELDS = ("name", "email", "phone", "status")

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def apply_delta(self, entity_id: str, field: str, delta: float) -> None:
        column = getattr(LeadRecordDB, field, None)
        if column is None or not isinstance(column.type, (Integer, Float)):
            raise PersistenceError(f"Lead field '{field}' is not numeric")

        async with self.db.get_session() as session:
            result = await session.execute(
                update(LeadRecordDB)
                .where(LeadRecordDB.id == entity_id)
                .values({column: column + delta})
            )
            if result.rowcount != 1:
                raise PersistenceError(f"Lead {entity_id} not found")

    async def set_field(self, entity_id: str, field: str, value: Any) -> None:
        if field not in self.ASSIGNABLE_FIELDS:
            raise PersistenceError(f"Lead field '{field}' cannot be assigned")

        async with self.db.get_session() as session:
            result = await session.execute(
                update(LeadRecordDB)
                .where(LeadRecordDB.id == entity_id)
                .values({field: value})
            )
            if result.rowcount != 1:
                raise PersistenceError(f"Lead {entity_id} not found")

    async def create(self, **fields) -> str:
        """Insert a lead and return its id"""
        async with self.db.get_session() as session:
            lead = LeadRecordDB(**fields)
            session.add(lead)
            await session.flush()
            return lead.id

    async def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        async with self.db.get_session() as session:
            lead = await session.get(LeadRecordDB, entity_id)
            if not lead:
                return None
            return {
                "id": lead.id,
                "name": lead.name,
                "email": lead.email,
                "phone": lead.phone,
                "status": lead.status,
                "score": lead.score,
            }


class SQLAlchemyTaskStore(TaskStore):
    """Task rows"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create(self, task: Dict[str, Any]) -> str:
        async with self.db.get_session() as session:
            task_db = TaskRecordDB(
                title=task.get("title") or "",
                description=task.get("description"),
                priority=task.get("priority") or "medium",
                due_date=task.get("due_date"),
                related_to=task.get("related_to"),
                assigned_to=task.get("assigned_to")
            )
            session.add(task_db)
            await session.flush()
            return task_db.id
