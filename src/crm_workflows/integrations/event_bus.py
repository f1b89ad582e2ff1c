"""
In-process event bus for execution lifecycle events
"""
import asyncio
from typing import Dict, Any, List, Callable
from dataclasses import dataclass, field
import logging

from ..models.execution import utcnow


logger = logging.getLogger(__name__)

EXECUTION_TOPIC = "workflow.execution.events"
NODE_TOPIC = "workflow.node.events"
WILDCARD = "*"


@dataclass
class Event:
    """Published event"""
    topic: str
    payload: Any
    timestamp: Any = field(default_factory=utcnow)


class EventBus:
    """
    Fan-out of events to subscribers.

    Subscriber failures are logged and never propagate to the publisher, so a
    broken listener cannot fail an execution.
    """

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, payload: Any):
        event = Event(topic=topic, payload=payload)

        async with self._lock:
            subscribers = list(self.subscribers.get(topic, [])) + list(self.subscribers.get(WILDCARD, []))

        for subscriber in subscribers:
            await self._notify_subscriber(subscriber, event)

        logger.debug(f"Published event to topic '{topic}' with {len(subscribers)} subscribers")

    async def subscribe(self, topic: str, handler: Callable):
        async with self._lock:
            self.subscribers.setdefault(topic, []).append(handler)

        logger.debug(f"Subscribed to topic '{topic}'")

    async def unsubscribe(self, topic: str, handler: Callable):
        async with self._lock:
            handlers = self.subscribers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self.subscribers[topic]

    async def _notify_subscriber(self, subscriber: Callable, event: Event):
        try:
            if asyncio.iscoroutinefunction(subscriber):
                await subscriber(event)
            else:
                subscriber(event)
        except Exception as e:
            logger.error(f"Error notifying subscriber for topic '{event.topic}': {e}", exc_info=True)
