"""Capability interfaces and their implementations"""

from .capabilities import (
    EmailSender,
    SmsSender,
    HttpCaller,
    HttpResponse,
    RecordStore,
    TaskStore
)
from .event_bus import EventBus, Event, EXECUTION_TOPIC, NODE_TOPIC
from .http import HttpxHttpCaller
from .local import (
    LoggingEmailSender,
    LoggingSmsSender,
    InMemoryRecordStore,
    InMemoryTaskStore
)

__all__ = [
    "EmailSender",
    "SmsSender",
    "HttpCaller",
    "HttpResponse",
    "RecordStore",
    "TaskStore",
    "EventBus",
    "Event",
    "EXECUTION_TOPIC",
    "NODE_TOPIC",
    "HttpxHttpCaller",
    "LoggingEmailSender",
    "LoggingSmsSender",
    "InMemoryRecordStore",
    "InMemoryTaskStore"
]
