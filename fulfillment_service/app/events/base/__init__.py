"""
Event envelope and the publisher/subscriber interfaces the Kafka client implements.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class BaseEvent(BaseModel):
    """Envelope shared by published domain events and consumed callbacks."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "1.0"
    source_service: str = "fulfillment-service"
    # Request correlation id; also the partition key
    correlation_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class EventHandler(ABC):
    @abstractmethod
    async def handle(self, event: BaseEvent) -> None: ...


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: BaseEvent, topic: Optional[str] = None) -> None: ...


class EventSubscriber(ABC):
    @abstractmethod
    async def subscribe(self, topic: str, event_type: str, handler: EventHandler) -> None:
        """Route messages of ``event_type`` arriving on ``topic`` to ``handler``."""
