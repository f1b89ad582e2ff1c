"""
Capability interfaces the engine calls for side effects
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class HttpResponse:
    """Raw HTTP response"""
    status: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class EmailSender(ABC):
    """Outbound email provider"""

    @abstractmethod
    async def send(self, to: str, subject: str, body_html: str) -> str:
        """Send a message and return the provider's message id"""
        pass


class SmsSender(ABC):
    """Outbound SMS provider"""

    @abstractmethod
    async def send(self, to: str, body: str) -> str:
        """Send a text message and return the provider's message id"""
        pass


class HttpCaller(ABC):
    """Outbound HTTP client"""

    @abstractmethod
    async def call(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[Any] = None
    ) -> HttpResponse:
        """Issue a request; raises on network errors, never on status codes"""
        pass


class RecordStore(ABC):
    """
    Mutations on CRM records (leads).

    Numeric changes only go through ``apply_delta`` so the store can apply
    them as a single atomic increment.
    """

    @abstractmethod
    async def apply_delta(self, entity_id: str, field: str, delta: float) -> None:
        """Atomically add ``delta`` to a numeric field"""
        pass

    @abstractmethod
    async def set_field(self, entity_id: str, field: str, value: Any) -> None:
        """Assign a field value"""
        pass


class TaskStore(ABC):
    """Follow-up tasks created by workflows"""

    @abstractmethod
    async def create(self, task: Dict[str, Any]) -> str:
        """Persist a task and return its id"""
        pass
