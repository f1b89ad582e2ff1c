"""
Execution coordinator tests
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from crm_workflows.exceptions import (
    DefinitionError, ExecutionNotFoundError, SchedulingError, StateTransitionError
)
from crm_workflows.integrations import EXECUTION_TOPIC, NODE_TOPIC
from crm_workflows.models.execution import ExecutionStatus

from conftest import parse_workflow


def linear_workflow(count: int):
    nodes = [{"id": "trigger", "type": "trigger"}]
    edges = []
    previous = "trigger"
    for i in range(1, count + 1):
        node_id = f"task-{i}"
        nodes.append({"id": node_id, "type": "task", "data": {"title": f"Step {i}"}})
        edges.append({"source": previous, "target": node_id})
        previous = node_id
    return {"id": "linear", "nodes": nodes, "edges": edges}


async def collect_node_events(engine):
    visited = []

    async def on_node_event(event):
        if event.payload.event_type == "node_completed":
            visited.append(event.payload.node_id)

    await engine.event_bus.subscribe(NODE_TOPIC, on_node_event)
    return visited


class TestTraversal:

    @pytest.mark.asyncio
    async def test_linear_workflow_visits_every_node_once_in_order(self, engine, lead):
        await engine.workflow_store.save(parse_workflow(linear_workflow(4)))
        visited = await collect_node_events(engine)

        execution = await engine.coordinator.start("linear", {"lead": lead})

        assert execution.status == ExecutionStatus.COMPLETED
        assert visited == ["task-1", "task-2", "task-3", "task-4"]
        assert [t["title"] for t in engine.tasks.tasks] == ["Step 1", "Step 2", "Step 3", "Step 4"]
        stored = await engine.execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_trigger_only_workflow_completes(self, engine):
        await engine.workflow_store.save(parse_workflow({"id": "solo", "nodes": [{"id": "t", "type": "trigger"}]}))
        execution = await engine.coordinator.start("solo", {"lead": {}})
        assert execution.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_context_accumulates_node_outputs(self, engine, lead):
        await engine.workflow_store.save(parse_workflow({
            "id": "outputs",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "mail", "type": "email", "data": {"subject": "Hi"}},
                {"id": "text", "type": "sms", "data": {"message": "Mail {{emailId}} sent"}},
            ],
            "edges": [{"source": "t", "target": "mail"}, {"source": "mail", "target": "text"}]
        }))

        execution = await engine.coordinator.start("outputs", {"lead": lead})

        assert execution.context["lead"] == lead
        assert execution.context["emailId"] == engine.email.sent[0]["id"]
        assert execution.context["messageId"] == engine.sms.sent[0]["id"]
        assert engine.sms.sent[0]["body"] == f"Mail {engine.email.sent[0]['id']} sent"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score, expected_node", [(15, "hot"), (5, "cold")])
    async def test_condition_follows_matching_branch(self, engine, score, expected_node):
        await engine.workflow_store.save(parse_workflow({
            "id": "branch",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "check", "type": "condition",
                 "data": {"field": "lead.score", "operator": "greater_than", "value": 10}},
                {"id": "hot", "type": "task", "data": {"title": "hot"}},
                {"id": "cold", "type": "task", "data": {"title": "cold"}},
            ],
            "edges": [
                {"source": "t", "target": "check"},
                {"source": "check", "target": "hot", "branch_label": "Yes"},
                {"source": "check", "target": "cold", "branch_label": "no"},
            ]
        }))

        execution = await engine.coordinator.start("branch", {"lead": {"id": "l1", "score": score}})

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.context["conditionMet"] is (score > 10)
        assert [t["title"] for t in engine.tasks.tasks] == [expected_node]

    @pytest.mark.asyncio
    async def test_missing_branch_is_fatal(self, engine):
        await engine.workflow_store.save(parse_workflow({
            "id": "half-branch",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "check", "type": "condition",
                 "data": {"field": "lead.score", "operator": "greater_than", "value": 10}},
                {"id": "hot", "type": "task", "data": {"title": "hot"}},
            ],
            "edges": [
                {"source": "t", "target": "check"},
                {"source": "check", "target": "hot", "branch_label": "yes"},
            ]
        }))

        execution = await engine.coordinator.start("half-branch", {"lead": {"score": 1}})

        assert execution.status == ExecutionStatus.FAILED
        assert "labeled 'no'" in execution.error
        assert engine.tasks.tasks == []

    @pytest.mark.asyncio
    async def test_dispatch_failure_stops_execution(self, engine, lead):
        await engine.workflow_store.save(parse_workflow({
            "id": "failing",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "mail", "type": "email", "data": {"subject": "Hi"}},
                {"id": "task", "type": "task", "data": {"title": "x"}},
                {"id": "hook", "type": "webhook", "data": {"url": "https://hooks.example.com"}},
                {"id": "after", "type": "sms", "data": {"message": "never"}},
            ],
            "edges": [
                {"source": "t", "target": "mail"},
                {"source": "mail", "target": "task"},
                {"source": "task", "target": "hook"},
                {"source": "hook", "target": "after"},
            ]
        }))
        engine.http.call = AsyncMock(side_effect=ConnectionError("connection refused"))

        execution = await engine.coordinator.start("failing", {"lead": lead})

        assert execution.status == ExecutionStatus.FAILED
        assert "connection refused" in execution.error
        assert "emailId" in execution.context and "taskId" in execution.context
        assert engine.sms.sent == []
        assert execution.current_node_id == "hook"
        assert engine.http.call.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_definition_creates_no_execution(self, engine):
        await engine.workflow_store.save(parse_workflow({
            "id": "fan-out",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "a", "type": "task"},
                {"id": "b", "type": "task"},
            ],
            "edges": [{"source": "t", "target": "a"}, {"source": "t", "target": "b"}]
        }))

        with pytest.raises(DefinitionError):
            await engine.coordinator.start("fan-out", {})
        with pytest.raises(DefinitionError):
            await engine.coordinator.start("does-not-exist", {})

        assert engine.execution_store.executions == {}

    @pytest.mark.asyncio
    async def test_lifecycle_events_are_published(self, engine, lead):
        await engine.workflow_store.save(parse_workflow(linear_workflow(1)))
        events = []
        await engine.event_bus.subscribe(EXECUTION_TOPIC, lambda e: events.append(e.payload.event_type))

        await engine.coordinator.start("linear", {"lead": lead})

        assert events == ["workflow_started", "workflow_completed"]


class TestSuspension:

    @pytest.mark.asyncio
    async def test_wait_persists_continuation(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))

        execution = await engine.coordinator.start("lead-nurture", {"lead": lead})

        assert execution.status == ExecutionStatus.RUNNING
        assert execution.current_node_id == "wait"
        continuations = await engine.continuation_store.list_for_execution(execution.id)
        assert len(continuations) == 1
        continuation = continuations[0]
        assert continuation.next_node_id == "is-hot"
        assert continuation.run_at == engine.clock() + timedelta(days=2)
        assert continuation.context["emailId"] == engine.email.sent[0]["id"]
        assert continuation.claimed_at is None

    @pytest.mark.asyncio
    async def test_unparseable_delay_is_due_immediately(self, engine, nurture_workflow, lead):
        nurture_workflow["workflow"]["nodes"][2]["data"]["delay"] = "a while"
        await engine.workflow_store.save(parse_workflow(nurture_workflow))

        execution = await engine.coordinator.start("lead-nurture", {"lead": lead})
        continuation = (await engine.continuation_store.list_for_execution(execution.id))[0]

        assert continuation.run_at == engine.clock()

    @pytest.mark.asyncio
    async def test_trailing_wait_completes(self, engine):
        await engine.workflow_store.save(parse_workflow({
            "id": "tail",
            "nodes": [{"id": "t", "type": "trigger"}, {"id": "w", "type": "wait", "data": {"delay": "1 day"}}],
            "edges": [{"source": "t", "target": "w"}]
        }))

        execution = await engine.coordinator.start("tail", {})

        assert execution.status == ExecutionStatus.COMPLETED
        assert engine.continuation_store.continuations == {}

    @pytest.mark.asyncio
    async def test_continuation_write_failure_raises_scheduling_error(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))
        engine.continuation_store.create = AsyncMock(side_effect=OSError("disk full"))

        with pytest.raises(SchedulingError) as exc_info:
            await engine.coordinator.start("lead-nurture", {"lead": lead})

        assert engine.continuation_store.create.await_count == 2
        stored = await engine.execution_store.get(exc_info.value.execution_id)
        assert stored.status == ExecutionStatus.RUNNING
        assert stored.current_node_id == "wait"

    @pytest.mark.asyncio
    async def test_retry_suspension_writes_missing_continuation(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))
        real_create = engine.continuation_store.create
        engine.continuation_store.create = AsyncMock(side_effect=OSError("disk full"))

        with pytest.raises(SchedulingError) as exc_info:
            await engine.coordinator.start("lead-nurture", {"lead": lead})
        execution_id = exc_info.value.execution_id

        engine.continuation_store.create = real_create
        engine.clock.advance(hours=1)
        execution = await engine.coordinator.retry_suspension(execution_id)

        assert execution.status == ExecutionStatus.RUNNING
        [continuation] = await engine.continuation_store.list_for_execution(execution_id)
        assert continuation.next_node_id == "is-hot"
        assert continuation.run_at == engine.clock() + timedelta(days=2)
        assert continuation.context["emailId"] == engine.email.sent[0]["id"]

        await engine.coordinator.retry_suspension(execution_id)
        assert len(await engine.continuation_store.list_for_execution(execution_id)) == 1
        assert len(engine.email.sent) == 1

    @pytest.mark.asyncio
    async def test_fail_execution_drops_continuations(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))
        execution = await engine.coordinator.start("lead-nurture", {"lead": lead})

        failed = await engine.coordinator.fail_execution(execution.id, "gave up")

        assert failed.status == ExecutionStatus.FAILED
        assert failed.error == "gave up"
        assert await engine.continuation_store.list_for_execution(execution.id) == []

    @pytest.mark.asyncio
    async def test_resume_continues_with_snapshot_context(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))
        execution = await engine.coordinator.start("lead-nurture", {"lead": lead})

        resumed = await engine.coordinator.resume(execution.id, "is-hot", {"lead": {**lead, "score": 80}})

        assert resumed.status == ExecutionStatus.COMPLETED
        assert resumed.context["conditionMet"] is True
        assert resumed.context["lead"]["score"] == 80
        assert [t["title"] for t in engine.tasks.tasks] == ["Bel Sanne"]

    @pytest.mark.asyncio
    async def test_resume_unknown_and_terminal_executions(self, engine):
        with pytest.raises(ExecutionNotFoundError):
            await engine.coordinator.resume("missing", "node")

        await engine.workflow_store.save(parse_workflow(linear_workflow(1)))
        done = await engine.coordinator.start("linear", {"lead": {}})
        again = await engine.coordinator.resume(done.id, "task-1")

        assert again.status == ExecutionStatus.COMPLETED
        assert len(engine.tasks.tasks) == 1


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_suspended_execution(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))
        execution = await engine.coordinator.start("lead-nurture", {"lead": lead})

        cancelled = await engine.coordinator.cancel(execution.id)

        assert cancelled.status == ExecutionStatus.CANCELLED
        assert await engine.continuation_store.list_for_execution(execution.id) == []

        with pytest.raises(StateTransitionError):
            await engine.coordinator.cancel(execution.id)
        with pytest.raises(ExecutionNotFoundError):
            await engine.coordinator.cancel("missing")

    @pytest.mark.asyncio
    async def test_cancel_during_traversal_stops_before_next_node(self, engine, lead):
        await engine.workflow_store.save(parse_workflow(linear_workflow(3)))
        entered = asyncio.Event()
        release = asyncio.Event()
        original_create = engine.tasks.create

        async def slow_create(task):
            entered.set()
            await release.wait()
            return await original_create(task)

        engine.tasks.create = slow_create

        run = asyncio.create_task(engine.coordinator.start("linear", {"lead": lead}))
        await asyncio.wait_for(entered.wait(), timeout=1)
        execution_id = next(iter(engine.execution_store.executions))

        await engine.coordinator.cancel(execution_id)
        release.set()
        result = await run

        assert result.status == ExecutionStatus.CANCELLED
        assert len(engine.tasks.tasks) == 1
        stored = await engine.execution_store.get(execution_id)
        assert stored.status == ExecutionStatus.CANCELLED


class TestExecutionLock:

    @pytest.mark.asyncio
    async def test_overlapping_holders_run_one_at_a_time(self, engine):
        coordinator = engine.coordinator
        active = 0
        peak = 0
        late = []

        async def hold():
            nonlocal active, peak
            async with coordinator._execution_lock("exec-1"):
                active += 1
                peak = max(peak, active)
                for _ in range(3):
                    await asyncio.sleep(0)
                active -= 1

        async def first_then_late_arrival():
            await hold()
            # Arrives while the woken waiter has not run yet
            late.append(asyncio.ensure_future(hold()))

        first = asyncio.ensure_future(first_then_late_arrival())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(hold())

        await asyncio.gather(first, second)
        await asyncio.gather(*late)

        assert peak == 1
        assert coordinator._locks == {}
        assert coordinator._lock_users == {}


class TestEndToEnd:

    def test_welcome_wait_callback_scenario(self, engine, lead):
        """Welcome email, wait one day, call-back task"""
        definition = {
            "id": "welcome-flow",
            "nodes": [
                {"id": "trigger", "type": "trigger", "data": {"event": "lead_created"}},
                {"id": "welcome", "type": "email",
                 "data": {"subject": "Welkom {{lead.name}}", "body": "Leuk dat je er bent, {{lead.name}}"}},
                {"id": "wait", "type": "wait", "data": {"delay": "1 day"}},
                {"id": "callback", "type": "task",
                 "data": {"title": "Terugbellen {{lead.name}}", "priority": "high", "due_in": "2 days"}},
            ],
            "edges": [
                {"source": "trigger", "target": "welcome"},
                {"source": "welcome", "target": "wait"},
                {"source": "wait", "target": "callback"},
            ]
        }

        async def runner():
            await engine.workflow_store.save(parse_workflow(definition))
            start_time = engine.clock()

            execution = await engine.coordinator.start("welcome-flow", {"lead": lead})
            assert execution.status == ExecutionStatus.RUNNING
            assert engine.email.sent[0]["subject"] == "Welkom Sanne"
            assert engine.email.sent[0]["to"] == "sanne@example.nl"

            engine.clock.advance(hours=23)
            assert await engine.scheduler.tick() == 0
            assert engine.tasks.tasks == []

            engine.clock.advance(hours=1)
            assert await engine.scheduler.tick() == 1

            done = await engine.execution_store.get(execution.id)
            assert done.status == ExecutionStatus.COMPLETED
            assert done.context["emailId"] == engine.email.sent[0]["id"]
            assert done.context["taskId"] == engine.tasks.tasks[0]["id"]

            task = engine.tasks.tasks[0]
            assert task["title"] == "Terugbellen Sanne"
            assert task["priority"] == "high"
            assert task["related_to"] == "lead-1"
            assert task["due_date"] == start_time + timedelta(days=3)
            assert engine.continuation_store.continuations == {}

        asyncio.run(runner())
