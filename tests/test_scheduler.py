"""
Continuation scheduler tests
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from crm_workflows.models.execution import ExecutionStatus

from conftest import parse_workflow


async def suspended_execution(engine, nurture_workflow, lead):
    await engine.workflow_store.save(parse_workflow(nurture_workflow))
    return await engine.coordinator.start("lead-nurture", {"lead": lead})


class TestTick:

    @pytest.mark.asyncio
    async def test_nothing_resumes_before_run_at(self, engine, nurture_workflow, lead):
        execution = await suspended_execution(engine, nurture_workflow, lead)

        engine.clock.advance(days=1, hours=23)
        assert await engine.scheduler.tick() == 0

        stored = await engine.execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.RUNNING
        assert len(engine.continuation_store.continuations) == 1

    @pytest.mark.asyncio
    async def test_due_continuation_resumes_and_is_deleted(self, engine, nurture_workflow, lead):
        execution = await suspended_execution(engine, nurture_workflow, lead)

        engine.clock.advance(days=2)
        assert await engine.scheduler.tick() == 1

        stored = await engine.execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.context["conditionMet"] is False
        assert engine.sms.sent[0]["body"] == "Hoi Sanne"
        assert engine.continuation_store.continuations == {}
        assert engine.scheduler.get_stats()["resumed"] == 1

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, engine, nurture_workflow, lead):
        await suspended_execution(engine, nurture_workflow, lead)
        assert await engine.scheduler.tick(now=engine.clock() + timedelta(days=3)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_ticks_resume_once(self, engine, nurture_workflow, lead):
        execution = await suspended_execution(engine, nurture_workflow, lead)
        engine.clock.advance(days=2)

        results = await asyncio.gather(engine.scheduler.tick(), engine.scheduler.tick())

        assert sorted(results) == [0, 1]
        assert len(engine.sms.sent) == 1
        stored = await engine.execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_chained_waits_create_a_new_continuation(self, engine, lead):
        await engine.workflow_store.save(parse_workflow({
            "id": "two-waits",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "w1", "type": "wait", "data": {"delay": "1 day"}},
                {"id": "w2", "type": "wait", "data": {"delay": "12 hours"}},
                {"id": "done", "type": "task", "data": {"title": "done"}},
            ],
            "edges": [
                {"source": "t", "target": "w1"},
                {"source": "w1", "target": "w2"},
                {"source": "w2", "target": "done"},
            ]
        }))
        execution = await engine.coordinator.start("two-waits", {"lead": lead})

        engine.clock.advance(days=1)
        assert await engine.scheduler.tick() == 1
        continuations = await engine.continuation_store.list_for_execution(execution.id)
        assert [c.next_node_id for c in continuations] == ["done"]
        assert continuations[0].run_at == engine.clock() + timedelta(hours=12)

        engine.clock.advance(hours=12)
        assert await engine.scheduler.tick() == 1
        stored = await engine.execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert engine.continuation_store.continuations == {}

    @pytest.mark.asyncio
    async def test_cancelled_execution_is_skipped(self, engine, nurture_workflow, lead):
        execution = await suspended_execution(engine, nurture_workflow, lead)
        stored = engine.execution_store.executions[execution.id]
        stored.status = ExecutionStatus.CANCELLED

        engine.clock.advance(days=2)
        assert await engine.scheduler.tick() == 0

        assert engine.continuation_store.continuations == {}
        assert engine.sms.sent == [] and engine.tasks.tasks == []
        assert engine.scheduler.get_stats()["skipped"] == 1

    @pytest.mark.asyncio
    async def test_failed_resume_keeps_claim_until_lease_expires(self, engine, nurture_workflow, lead):
        execution = await suspended_execution(engine, nurture_workflow, lead)
        original_resume = engine.coordinator.resume
        engine.coordinator.resume = AsyncMock(side_effect=RuntimeError("database went away"))

        engine.clock.advance(days=2)
        assert await engine.scheduler.tick() == 0
        assert engine.scheduler.get_stats()["errors"] == 1

        continuation = next(iter(engine.continuation_store.continuations.values()))
        assert continuation.claimed_at == engine.clock()

        engine.coordinator.resume = original_resume
        engine.clock.advance(seconds=299)
        assert await engine.scheduler.tick() == 0

        engine.clock.advance(seconds=1)
        assert await engine.scheduler.tick() == 1
        stored = await engine.execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_batch_size_limits_a_tick(self, engine, nurture_workflow, lead):
        await engine.workflow_store.save(parse_workflow(nurture_workflow))
        for _ in range(3):
            await engine.coordinator.start("lead-nurture", {"lead": lead})
        engine.scheduler.batch_size = 2

        engine.clock.advance(days=2)
        assert await engine.scheduler.tick() == 2
        assert await engine.scheduler.tick() == 1


class TestLoop:

    @pytest.mark.asyncio
    async def test_background_loop_resumes_due_work(self, engine, nurture_workflow, lead):
        execution = await suspended_execution(engine, nurture_workflow, lead)
        engine.clock.advance(days=2)

        await engine.scheduler.start()
        assert engine.scheduler.is_running
        for _ in range(100):
            stored = await engine.execution_store.get(execution.id)
            if stored.status == ExecutionStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await engine.scheduler.stop()

        assert stored.status == ExecutionStatus.COMPLETED
        assert not engine.scheduler.is_running
        assert engine.scheduler.get_stats()["ticks"] >= 1

    @pytest.mark.asyncio
    async def test_loop_survives_failing_ticks(self, engine):
        engine.continuation_store.list_due = AsyncMock(side_effect=OSError("no database"))

        await engine.scheduler.start()
        await asyncio.sleep(0.05)
        await engine.scheduler.stop()

        assert engine.continuation_store.list_due.await_count >= 2

    def test_stats_shape(self, engine):
        stats = engine.scheduler.get_stats()
        assert stats["running"] is False
        assert stats["interval"] == 0.01
        assert stats["lease_seconds"] == 300
        assert stats["last_tick_at"] is None
