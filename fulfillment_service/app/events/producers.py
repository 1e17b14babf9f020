from typing import Any, Dict, Optional

from .base import BaseEvent
from .base.kafka_client import KafkaEventPublisher
from .schemas import FulfillmentEventData

from ..utils.logging import setup_fulfillment_logging as setup_logging

logger = setup_logging("fulfillment-producer-events", log_level="INFO")

# Identifiers worth lifting into the publish log line
LOGGED_FIELDS = (
    "order_id",
    "order_item_id",
    "return_id",
    "payout_id",
    "vendor_id",
    "new_status",
    "decision",
)


class BaseEventPublisher:
    """Base class for event publishers with common functionality"""

    def __init__(
        self,
        event_publisher: KafkaEventPublisher,
        source_service: str = "fulfillment-service",
    ):
        self.event_publisher = event_publisher
        self.source_service = source_service

    async def _publish_event(
        self,
        event: BaseEvent,
        topic: str,
        event_name: str,
        log_data: Dict[str, Any],
    ) -> None:
        """Common event publishing logic with error handling and logging"""
        try:
            await self.event_publisher.publish(event, topic=topic)
            logger.info(f"Published {event_name} event.", extra=log_data)
        except Exception as e:
            logger.error(f"Failed to publish {event_name} event: {e}")
            raise


class FulfillmentEventProducer(BaseEventPublisher):
    """
    Publishes the domain events emitted by committed state transitions
    (item and order status, cancellations, handovers, returns, payouts).
    """

    def __init__(
        self,
        event_publisher: KafkaEventPublisher,
        topic: str = "fulfillment.events",
        source_service: str = "fulfillment-service",
    ):
        super().__init__(event_publisher, source_service)
        self.topic = topic

    async def publish_domain_event(
        self,
        event_type: str,
        data: FulfillmentEventData,
        correlation_id: Optional[str] = None,
    ) -> None:
        payload = data.to_dict()
        event = BaseEvent(
            event_type=event_type,
            source_service=self.source_service,
            correlation_id=correlation_id,
            data=payload,
        )

        log_data = {key: str(payload[key]) for key in LOGGED_FIELDS if key in payload}
        log_data["event_type"] = event_type
        log_data["correlation_id"] = correlation_id

        await self._publish_event(
            event=event,
            topic=self.topic,
            event_name=event_type,
            log_data=log_data,
        )
