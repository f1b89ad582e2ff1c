"""
Node action dispatcher tests
"""
import asyncio

import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from crm_workflows.core.dispatcher import ActionHandler, NodeActionDispatcher, evaluate_condition
from crm_workflows.core.retry import RetryPolicy
from crm_workflows.integrations import HttpResponse, InMemoryRecordStore
from crm_workflows.models.workflow import Node, NodeKind, ActionType

from conftest import FakeClock, RecordingHttpCaller


def action(action_type, **config):
    return Node(id=f"{action_type}-node", kind=NodeKind.ACTION, action_type=action_type, config=config)


@pytest.fixture
def email_sender():
    sender = AsyncMock()
    sender.send.return_value = "email-1"
    return sender


@pytest.fixture
def sms_sender():
    sender = AsyncMock()
    sender.send.return_value = "sms-1"
    return sender


@pytest.fixture
def task_store():
    store = AsyncMock()
    store.create.return_value = "task-1"
    return store


@pytest.fixture
def record_store():
    return InMemoryRecordStore({"lead-1": {"score": 40, "status": "new"}})


@pytest.fixture
def http_caller():
    return RecordingHttpCaller()


@pytest.fixture
def dispatcher(email_sender, sms_sender, task_store, record_store, http_caller):
    return NodeActionDispatcher(
        email_sender=email_sender,
        sms_sender=sms_sender,
        http_caller=http_caller,
        record_store=record_store,
        task_store=task_store,
        retry_policy=RetryPolicy(max_attempts=2, timeout=1.0, initial_delay=0),
        clock=FakeClock(datetime(2026, 1, 5, 9, 0, 0))
    )


class TestConditionEvaluation:
    """Condition operators"""

    @pytest.mark.parametrize("field_value, operator, value, expected", [
        ("hot", "equals", "hot", True),
        ("hot", "equals", "cold", False),
        ("hot", "not_equals", "cold", True),
        ("info@bakker.nl", "contains", "bakker", True),
        (["vip", "b2b"], "contains", "vip", True),
        (None, "contains", "x", False),
        (60, "greater_than", 50, True),
        ("60", "greater_than", "50", True),
        (40, "greater_than", 50, False),
        (40, "less_than", 50, True),
        ("abc", "less_than", 5, False),
        (None, "greater_than", 0, False),
    ])
    def test_operators(self, field_value, operator, value, expected):
        assert evaluate_condition(field_value, operator, value) is expected

    def test_unknown_operator_is_false(self):
        assert evaluate_condition(1, "matches", 1) is False


class TestDispatch:
    """Per action type behaviour"""

    @pytest.mark.asyncio
    async def test_send_email_to_lead(self, dispatcher, email_sender, lead):
        node = action("send_email", subject="Welkom {{lead.name}}", body="<p>{{lead.company}}</p>", to="x@y.nl")
        result = await dispatcher.dispatch(node, {"lead": lead})

        assert result.success
        assert result.data == {"emailId": "email-1"}
        email_sender.send.assert_awaited_once_with("sanne@example.nl", "Welkom Sanne", "<p>Bakkerij de Vries</p>")

    @pytest.mark.asyncio
    async def test_send_email_falls_back_to_config_recipient(self, dispatcher, email_sender):
        node = action("email", subject="Hi", body="Body", to="{{contact.email}}")
        result = await dispatcher.dispatch(node, {"contact": {"email": "ops@example.nl"}})

        assert result.success
        assert email_sender.send.await_args.args[0] == "ops@example.nl"

    @pytest.mark.asyncio
    async def test_send_email_without_recipient_fails(self, dispatcher, email_sender):
        result = await dispatcher.dispatch(action("send_email", subject="Hi"), {})

        assert not result.success
        assert "recipient" in result.error
        email_sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_sms(self, dispatcher, sms_sender, lead):
        result = await dispatcher.dispatch(action("sms", message="Hoi {{lead.name}}"), {"lead": lead})

        assert result.data == {"messageId": "sms-1"}
        sms_sender.send.assert_awaited_once_with("+31612345678", "Hoi Sanne")

    @pytest.mark.asyncio
    async def test_create_task(self, dispatcher, task_store, lead):
        node = action("create_task", title="Bel {{lead.name}}", due_in="3 days", assigned_to="user-7")
        result = await dispatcher.dispatch(node, {"lead": lead})

        assert result.data == {"taskId": "task-1"}
        task = task_store.create.await_args.args[0]
        assert task["title"] == "Bel Sanne"
        assert task["priority"] == "medium"
        assert task["due_date"] == datetime(2026, 1, 8, 9, 0, 0)
        assert task["related_to"] == "lead-1"
        assert task["assigned_to"] == "user-7"

    @pytest.mark.asyncio
    async def test_update_record_applies_delta_and_status(self, dispatcher, record_store, lead):
        node = action("update-lead", status="contacted", field="score", delta="10")
        result = await dispatcher.dispatch(node, {"lead": lead})

        assert result.success
        assert result.data == {}
        assert record_store.records["lead-1"] == {"score": 50, "status": "contacted"}

    @pytest.mark.asyncio
    async def test_update_record_requires_lead_id(self, dispatcher):
        result = await dispatcher.dispatch(action("update_record", delta=5), {"lead": {"name": "x"}})
        assert not result.success

    @pytest.mark.asyncio
    async def test_update_record_rejects_non_numeric_delta(self, dispatcher, lead):
        result = await dispatcher.dispatch(action("update_record", delta="lots"), {"lead": lead})
        assert not result.success
        assert "not numeric" in result.error

    @pytest.mark.asyncio
    async def test_condition_node(self, dispatcher, lead):
        node = Node(
            id="check",
            kind=NodeKind.CONDITION,
            config={"field": "lead.score", "operator": "greater_than", "value": 30}
        )
        result = await dispatcher.dispatch(node, {"lead": lead})
        assert result.data == {"conditionMet": True}

    @pytest.mark.asyncio
    async def test_webhook_merges_json_response(self, dispatcher, http_caller, lead):
        http_caller.response = HttpResponse(status=201, body='{"crmId": "abc", "synced": true}')
        node = action(
            "webhook",
            url="https://hooks.example.com/{{lead.id}}",
            headers={"X-Token": "t"},
            body={"name": "{{lead.name}}"}
        )
        result = await dispatcher.dispatch(node, {"lead": lead})

        assert result.data == {"crmId": "abc", "synced": True}
        request = http_caller.requests[0]
        assert request["url"] == "https://hooks.example.com/lead-1"
        assert request["method"] == "POST"
        assert request["headers"] == {"Content-Type": "application/json", "X-Token": "t"}
        assert request["body"] == {"name": "Sanne"}

    @pytest.mark.asyncio
    async def test_webhook_non_object_and_empty_responses(self, dispatcher, http_caller):
        node = action("call_webhook", url="https://hooks.example.com", method="get")

        http_caller.response = HttpResponse(status=200, body="[1, 2]")
        assert (await dispatcher.dispatch(node, {})).data == {"response": [1, 2]}

        http_caller.response = HttpResponse(status=204, body="")
        assert (await dispatcher.dispatch(node, {})).data == {}
        assert http_caller.requests[-1]["method"] == "GET"

    @pytest.mark.asyncio
    async def test_webhook_error_status_fails(self, dispatcher, http_caller):
        http_caller.response = HttpResponse(status=500, body="oops")
        result = await dispatcher.dispatch(action("webhook", url="https://hooks.example.com"), {})

        assert not result.success
        assert "HTTP 500" in result.error
        assert len(http_caller.requests) == 1

    @pytest.mark.asyncio
    async def test_capability_errors_are_retried_then_reported(self, dispatcher, email_sender, lead):
        email_sender.send.side_effect = ConnectionError("smtp unavailable")
        result = await dispatcher.dispatch(action("send_email", subject="Hi"), {"lead": lead})

        assert not result.success
        assert "smtp unavailable" in result.error
        assert email_sender.send.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_action_type_is_a_noop(self, dispatcher):
        result = await dispatcher.dispatch(action("fax"), {"lead": {}})
        assert result.success
        assert result.data == {}

    @pytest.mark.asyncio
    async def test_missing_capability_fails(self, lead):
        dispatcher = NodeActionDispatcher(retry_policy=RetryPolicy.single_attempt())
        result = await dispatcher.dispatch(action("sms", message="x"), {"lead": lead})
        assert not result.success

    @pytest.mark.asyncio
    async def test_wait_nodes_are_not_dispatched(self, dispatcher):
        node = Node(id="w", kind=NodeKind.WAIT, config={"delay": "1 day"})
        assert node.action_type == ActionType.WAIT
        result = await dispatcher.dispatch(node, {})
        assert not result.success

    @pytest.mark.asyncio
    async def test_concurrent_score_updates_all_land(self, dispatcher, record_store, lead):
        deltas = list(range(1, 21))

        results = await asyncio.gather(*(
            dispatcher.dispatch(action("update_record", field="score", delta=d), {"lead": lead})
            for d in deltas
        ))

        assert all(r.success for r in results)
        assert record_store.records["lead-1"]["score"] == 40 + sum(deltas)

    def test_action_handler_requires_handle(self):
        with pytest.raises(TypeError):
            ActionHandler()
