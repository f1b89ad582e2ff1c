"""
In-process capability implementations for local runs and tests
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List
from uuid import uuid4

from .capabilities import EmailSender, SmsSender, RecordStore, TaskStore


logger = logging.getLogger(__name__)


class LoggingEmailSender(EmailSender):
    """Records outgoing email instead of delivering it"""

    def __init__(self, sender: str = "noreply@example.com"):
        self.sender = sender
        self.sent: List[Dict[str, str]] = []

    async def send(self, to: str, subject: str, body_html: str) -> str:
        message_id = f"email-{uuid4().hex[:12]}"
        self.sent.append({
            "id": message_id,
            "from": self.sender,
            "to": to,
            "subject": subject,
            "body_html": body_html
        })
        logger.info(f"Email {message_id} to {to}: {subject}")
        return message_id


class LoggingSmsSender(SmsSender):
    """Records outgoing SMS instead of delivering it"""

    def __init__(self, originator: str = "CRM"):
        self.originator = originator
        self.sent: List[Dict[str, str]] = []

    async def send(self, to: str, body: str) -> str:
        message_id = f"sms-{uuid4().hex[:12]}"
        self.sent.append({
            "id": message_id,
            "originator": self.originator,
            "to": to,
            "body": body
        })
        logger.info(f"SMS {message_id} to {to}")
        return message_id


class InMemoryRecordStore(RecordStore):
    """Dictionary backed records; increments happen under a lock"""

    def __init__(self, records: Dict[str, Dict[str, Any]] = None):
        self.records: Dict[str, Dict[str, Any]] = defaultdict(dict, records or {})
        self._lock = asyncio.Lock()

    async def apply_delta(self, entity_id: str, field: str, delta: float) -> None:
        async with self._lock:
            record = self.records[entity_id]
            record[field] = (record.get(field) or 0) + delta

    async def set_field(self, entity_id: str, field: str, value: Any) -> None:
        async with self._lock:
            self.records[entity_id][field] = value


class InMemoryTaskStore(TaskStore):
    """List backed task store"""

    def __init__(self):
        self.tasks: List[Dict[str, Any]] = []

    async def create(self, task: Dict[str, Any]) -> str:
        task_id = task.get("id") or str(uuid4())
        self.tasks.append({**task, "id": task_id})
        logger.info(f"Task {task_id} created: {task.get('title')}")
        return task_id
