"""
SQLAlchemy table definitions
"""
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, Float, DateTime, ForeignKey,
    CheckConstraint, Index, JSON, text
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid


Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class WorkflowDefinition(Base):
    """Stored workflow graph"""
    __tablename__ = 'workflow_definitions'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    definition = Column(JSON, nullable=False)
    trigger_event = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_workflow_definitions_trigger', 'trigger_event', 'is_active'),
    )


class WorkflowExecution(Base):
    """One run of a workflow"""
    __tablename__ = 'workflow_executions'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    workflow_id = Column(String(36), ForeignKey('workflow_definitions.id'), nullable=False)
    status = Column(String(20), nullable=False)
    context = Column(JSON, default=dict)
    current_node_id = Column(String(255))
    error = Column(Text)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'completed', 'failed', 'cancelled')",
            name='check_execution_status'
        ),
        Index('idx_workflow_executions_workflow_id', 'workflow_id'),
        Index('idx_workflow_executions_status', 'status'),
    )


class WorkflowContinuation(Base):
    """Pending resumption of a suspended execution"""
    __tablename__ = 'workflow_continuations'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    execution_id = Column(
        String(36), ForeignKey('workflow_executions.id', ondelete='CASCADE'), nullable=False
    )
    next_node_id = Column(String(255), nullable=False)
    run_at = Column(DateTime, nullable=False)
    context = Column(JSON, default=dict)
    claimed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_workflow_continuations_run_at', 'run_at'),
        Index('idx_workflow_continuations_execution_id', 'execution_id'),
        # At most one unclaimed continuation per execution
        Index(
            'uq_workflow_continuations_active',
            'execution_id',
            unique=True,
            sqlite_where=text('claimed_at IS NULL'),
            postgresql_where=text('claimed_at IS NULL')
        ),
    )


class TriggerQueueEntry(Base):
    """Queued workflow start"""
    __tablename__ = 'workflow_trigger_queue'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    workflow_id = Column(String(36), nullable=False)
    trigger_type = Column(String(100), nullable=False, default='manual')
    trigger_data = Column(JSON, default=dict)
    status = Column(String(20), nullable=False, default='pending')
    retry_count = Column(Integer, nullable=False, default=0)
    error = Column(Text)
    execution_id = Column(String(36))
    created_at = Column(DateTime, nullable=False)
    processed_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='check_trigger_status'
        ),
        Index('idx_workflow_trigger_queue_status', 'status', 'created_at'),
    )


class LeadRecord(Base):
    """CRM lead touched by update_record nodes"""
    __tablename__ = 'leads'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))
    status = Column(String(50))
    score = Column(Float, nullable=False, default=0)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class TaskRecord(Base):
    """Follow-up task created by create_task nodes"""
    __tablename__ = 'tasks'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    priority = Column(String(20), default='medium')
    status = Column(String(20), default='open')
    due_date = Column(DateTime)
    related_to = Column(String(36))
    assigned_to = Column(String(255))
    created_at = Column(DateTime, server_default=func.now())
