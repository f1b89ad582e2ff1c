"""
Pytest configuration and shared fixtures
"""
import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

from crm_workflows.core.coordinator import ExecutionCoordinator
from crm_workflows.core.dispatcher import NodeActionDispatcher
from crm_workflows.core.loader import GraphDefinitionLoader
from crm_workflows.core.parser import WorkflowParser
from crm_workflows.core.retry import RetryPolicy
from crm_workflows.core.scheduler import ContinuationScheduler
from crm_workflows.core.trigger_queue import TriggerQueueProcessor
from crm_workflows.integrations import (
    EventBus, HttpResponse, LoggingEmailSender, LoggingSmsSender,
    InMemoryRecordStore, InMemoryTaskStore
)
from crm_workflows.integrations.capabilities import HttpCaller
from crm_workflows.storage.repository import (
    InMemoryWorkflowStore, InMemoryExecutionStore, InMemoryContinuationStore,
    InMemoryTriggerQueueStore
)


class FakeClock:
    """Settable clock"""

    def __init__(self, now: datetime = None):
        self.now = now or datetime(2026, 1, 5, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingHttpCaller(HttpCaller):
    """Returns canned responses and remembers requests"""

    def __init__(self, response: HttpResponse = None):
        self.response = response or HttpResponse(status=200, body="{}")
        self.requests = []

    async def call(self, url, method, headers, body=None):
        self.requests.append({"url": url, "method": method, "headers": headers, "body": body})
        return self.response


def build_engine(clock: FakeClock = None):
    """All components wired on in-memory stores"""
    clock = clock or FakeClock()
    workflow_store = InMemoryWorkflowStore()
    execution_store = InMemoryExecutionStore()
    continuation_store = InMemoryContinuationStore()
    queue_store = InMemoryTriggerQueueStore()
    email = LoggingEmailSender()
    sms = LoggingSmsSender()
    http = RecordingHttpCaller()
    records = InMemoryRecordStore()
    tasks = InMemoryTaskStore()
    event_bus = EventBus()

    dispatcher = NodeActionDispatcher(
        email_sender=email,
        sms_sender=sms,
        http_caller=http,
        record_store=records,
        task_store=tasks,
        retry_policy=RetryPolicy(max_attempts=1, timeout=1.0),
        clock=clock
    )
    coordinator = ExecutionCoordinator(
        loader=GraphDefinitionLoader(workflow_store),
        dispatcher=dispatcher,
        execution_store=execution_store,
        continuation_store=continuation_store,
        event_bus=event_bus,
        clock=clock,
        suspend_policy=RetryPolicy(max_attempts=2, timeout=1.0, initial_delay=0)
    )
    scheduler = ContinuationScheduler(
        coordinator,
        continuation_store,
        execution_store,
        interval=0.01,
        lease_seconds=300,
        clock=clock
    )
    trigger_queue = TriggerQueueProcessor(coordinator, queue_store, workflow_store)

    return SimpleNamespace(
        clock=clock,
        workflow_store=workflow_store,
        execution_store=execution_store,
        continuation_store=continuation_store,
        queue_store=queue_store,
        email=email,
        sms=sms,
        http=http,
        records=records,
        tasks=tasks,
        event_bus=event_bus,
        dispatcher=dispatcher,
        coordinator=coordinator,
        scheduler=scheduler,
        trigger_queue=trigger_queue
    )


def parse_workflow(definition: dict):
    return WorkflowParser().parse(definition)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock):
    return build_engine(clock)


@pytest.fixture
def lead() -> dict:
    return {
        "id": "lead-1",
        "name": "Sanne",
        "email": "sanne@example.nl",
        "phone": "+31612345678",
        "company": "Bakkerij de Vries",
        "score": 40
    }


@pytest.fixture
def nurture_workflow() -> dict:
    """trigger -> email -> wait 2 days -> condition(score > 50) -> task | sms"""
    return {
        "workflow": {
            "id": "lead-nurture",
            "name": "Lead nurture",
            "nodes": [
                {"id": "trigger", "type": "trigger", "config": {"event": "lead_created"}},
                {"id": "welcome", "type": "email",
                 "data": {"subject": "Welkom {{lead.name}}", "body": "Hallo {{lead.name}}"}},
                {"id": "wait", "type": "wait", "data": {"delay": "2 days"}},
                {"id": "is-hot", "type": "condition",
                 "data": {"field": "lead.score", "operator": "greater_than", "value": 50}},
                {"id": "call", "type": "task", "data": {"title": "Bel {{lead.name}}"}},
                {"id": "nudge", "type": "sms", "data": {"message": "Hoi {{lead.name}}"}}
            ],
            "edges": [
                {"source": "trigger", "target": "welcome"},
                {"source": "welcome", "target": "wait"},
                {"source": "wait", "target": "is-hot"},
                {"source": "is-hot", "target": "call", "branch_label": "yes"},
                {"source": "is-hot", "target": "nudge", "branch_label": "no"}
            ]
        }
    }
