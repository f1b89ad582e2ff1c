"""
Node action dispatch: one handler per action type
"""
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from ..exceptions import DispatchError
from ..models.workflow import Node, ActionType
from ..models.execution import DispatchResult, utcnow
from ..integrations.capabilities import (
    EmailSender, SmsSender, HttpCaller, RecordStore, TaskStore
)
from .interpolation import interpolate, interpolate_json, resolve_path
from .durations import due_from_now
from .retry import RetryPolicy, call_with_retry


logger = logging.getLogger(__name__)


class ConditionOperator(Enum):
    """Comparison operators for condition nodes"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(field_value: Any, operator: str, value: Any) -> bool:
    """Evaluate ``field_value <operator> value``; unknown operators are false"""
    try:
        op = ConditionOperator(operator)
    except ValueError:
        logger.warning(f"Unknown condition operator '{operator}', treating as false")
        return False

    if op == ConditionOperator.EQUALS:
        return field_value == value
    if op == ConditionOperator.NOT_EQUALS:
        return field_value != value
    if op == ConditionOperator.CONTAINS:
        if field_value is None:
            return False
        if isinstance(field_value, (list, tuple, set)):
            return value in field_value
        return str(value) in str(field_value)

    left, right = _to_number(field_value), _to_number(value)
    if left is None or right is None:
        return False
    if op == ConditionOperator.GREATER_THAN:
        return left > right
    return left < right


class ActionHandler(ABC):
    """Base class for node action handlers"""

    def __init__(self, retry_policy: RetryPolicy = None):
        self.retry_policy = retry_policy or RetryPolicy()

    @abstractmethod
    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        """Perform the node's side effect and return the context delta"""
        pass

    async def _call(self, node: Node, func: Callable[[], Awaitable[Any]], description: str) -> Any:
        try:
            return await call_with_retry(func, self.retry_policy, f"{description} for node {node.id}")
        except Exception as e:
            raise DispatchError(node.id, f"{description} failed: {e}", e)


class NoopHandler(ActionHandler):
    """Default for unrecognized action types"""

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Node {node.id} has unrecognized action type '{node.action_name}', skipping")
        return {}


class SendEmailHandler(ActionHandler):
    """send_email"""

    def __init__(self, sender: Optional[EmailSender], retry_policy: RetryPolicy = None):
        super().__init__(retry_policy)
        self.sender = sender

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        if self.sender is None:
            raise DispatchError(node.id, "No email sender configured")

        config = node.config
        subject = interpolate(str(config.get('subject') or ''), context)
        body = interpolate(str(config.get('body') or ''), context)
        to = resolve_path(context, 'lead.email') or interpolate(str(config.get('to') or ''), context)
        if not to:
            raise DispatchError(node.id, "No email recipient in context or node config")

        email_id = await self._call(node, lambda: self.sender.send(to, subject, body), "Email delivery")
        return {"emailId": email_id}


class SendSmsHandler(ActionHandler):
    """send_sms"""

    def __init__(self, sender: Optional[SmsSender], retry_policy: RetryPolicy = None):
        super().__init__(retry_policy)
        self.sender = sender

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        if self.sender is None:
            raise DispatchError(node.id, "No SMS sender configured")

        config = node.config
        message = interpolate(str(config.get('message') or config.get('body') or ''), context)
        to = resolve_path(context, 'lead.phone') or interpolate(str(config.get('to') or ''), context)
        if not to:
            raise DispatchError(node.id, "No SMS recipient in context or node config")

        message_id = await self._call(node, lambda: self.sender.send(to, message), "SMS delivery")
        return {"messageId": message_id}


class CreateTaskHandler(ActionHandler):
    """create_task"""

    def __init__(
        self,
        task_store: Optional[TaskStore],
        clock: Callable[[], datetime] = utcnow,
        retry_policy: RetryPolicy = None
    ):
        super().__init__(retry_policy)
        self.task_store = task_store
        self.clock = clock

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        if self.task_store is None:
            raise DispatchError(node.id, "No task store configured")

        config = node.config
        task = {
            "title": interpolate(str(config.get('title') or ''), context),
            "description": interpolate(str(config.get('description') or ''), context),
            "priority": config.get('priority') or 'medium',
            "due_date": due_from_now(config.get('due_in'), self.clock()),
            "related_to": resolve_path(context, 'lead.id'),
            "assigned_to": config.get('assigned_to'),
        }

        task_id = await self._call(node, lambda: self.task_store.create(task), "Task creation")
        return {"taskId": task_id}


class UpdateRecordHandler(ActionHandler):
    """update_record: status assignment and/or atomic numeric delta on the lead"""

    def __init__(self, record_store: Optional[RecordStore], retry_policy: RetryPolicy = None):
        super().__init__(retry_policy)
        self.record_store = record_store

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        if self.record_store is None:
            raise DispatchError(node.id, "No record store configured")

        entity_id = resolve_path(context, 'lead.id')
        if entity_id is None:
            raise DispatchError(node.id, "No lead.id in context")

        config = node.config
        status = config.get('status')
        if status:
            await self._call(
                node,
                lambda: self.record_store.set_field(entity_id, 'status', status),
                "Record status update"
            )

        delta = config.get('delta', config.get('score_change'))
        if delta not in (None, ''):
            amount = _to_number(delta)
            if amount is None:
                raise DispatchError(node.id, f"Delta '{delta}' is not numeric")
            if amount.is_integer():
                amount = int(amount)
            field = config.get('field') or 'score'
            await self._call(
                node,
                lambda: self.record_store.apply_delta(entity_id, field, amount),
                "Record increment"
            )

        return {}


class ConditionHandler(ActionHandler):
    """condition"""

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        config = node.config
        field_value = resolve_path(context, str(config.get('field') or ''))
        result = evaluate_condition(field_value, config.get('operator', ''), config.get('value'))
        return {"conditionMet": result}


class CallWebhookHandler(ActionHandler):
    """call_webhook"""

    def __init__(self, http_caller: Optional[HttpCaller], retry_policy: RetryPolicy = None):
        super().__init__(retry_policy)
        self.http_caller = http_caller

    async def handle(self, node: Node, context: Dict[str, Any]) -> Dict[str, Any]:
        if self.http_caller is None:
            raise DispatchError(node.id, "No HTTP caller configured")

        config = node.config
        url = interpolate(str(config.get('url') or ''), context)
        if not url:
            raise DispatchError(node.id, "Webhook URL not configured")

        method = str(config.get('method') or 'POST').upper()
        headers = {'Content-Type': 'application/json', **(config.get('headers') or {})}

        try:
            body = interpolate_json(config.get('body') or {}, context)
        except json.JSONDecodeError as e:
            raise DispatchError(node.id, f"Webhook body is not valid JSON after interpolation: {e}", e)

        response = await self._call(
            node,
            lambda: self.http_caller.call(url, method, headers, body),
            f"Webhook {method} {url}"
        )
        if not response.ok:
            raise DispatchError(node.id, f"Webhook {method} {url} returned HTTP {response.status}")

        if not (response.body or '').strip():
            return {}
        try:
            parsed = json.loads(response.body)
        except json.JSONDecodeError as e:
            raise DispatchError(node.id, f"Webhook response is not valid JSON: {e}", e)

        if isinstance(parsed, dict):
            return parsed
        return {"response": parsed}


class NodeActionDispatcher:
    """Executes one node's side effect"""

    def __init__(
        self,
        email_sender: EmailSender = None,
        sms_sender: SmsSender = None,
        http_caller: HttpCaller = None,
        record_store: RecordStore = None,
        task_store: TaskStore = None,
        retry_policy: RetryPolicy = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.handlers: Dict[ActionType, ActionHandler] = {
            ActionType.SEND_EMAIL: SendEmailHandler(email_sender, self.retry_policy),
            ActionType.SEND_SMS: SendSmsHandler(sms_sender, self.retry_policy),
            ActionType.CREATE_TASK: CreateTaskHandler(task_store, clock, self.retry_policy),
            ActionType.UPDATE_RECORD: UpdateRecordHandler(record_store, self.retry_policy),
            ActionType.CONDITION: ConditionHandler(self.retry_policy),
            ActionType.CALL_WEBHOOK: CallWebhookHandler(http_caller, self.retry_policy),
        }
        self.default_handler = NoopHandler(self.retry_policy)

    def handler_for(self, node: Node) -> ActionHandler:
        if isinstance(node.action_type, ActionType):
            return self.handlers.get(node.action_type, self.default_handler)
        return self.default_handler

    async def dispatch(self, node: Node, context: Dict[str, Any]) -> DispatchResult:
        """Run a node's action; failures are returned, never raised"""
        if node.is_wait:
            return DispatchResult.failed(f"Wait node {node.id} must be handled by the coordinator")

        handler = self.handler_for(node)
        logger.debug(f"Dispatching node {node.id} ({node.action_name}) via {type(handler).__name__}")

        try:
            data = await handler.handle(node, context)
            return DispatchResult.ok(data)
        except DispatchError as e:
            logger.warning(f"Node {node.id} dispatch failed: {e}")
            return DispatchResult.failed(str(e))
        except Exception as e:
            logger.error(f"Node {node.id} raised during dispatch: {e}", exc_info=True)
            return DispatchResult.failed(str(e) or type(e).__name__)
