"""
Fulfillment service event consumers for callbacks from the payment gateway.

Payment and refund callbacks arrive asynchronously and only flip status
flags; each event is handled in its own session and unit of work.
"""

from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.settings import get_settings
from ..models.order import PaymentStatus
from ..services.order_service import OrderService
from ..services.results import Actor, OperationResult, Role
from ..services.return_service import ReturnService
from ..utils.logging import setup_fulfillment_logging as setup_logging
from .base import BaseEvent, EventHandler
from .base.kafka_client import KafkaEventSubscriber
from .schemas import PAYMENT_FAILED, PAYMENT_PROCESSED, REFUND_PROCESSED

settings = get_settings()
logger = setup_logging("fulfillment-consumer-events", log_level="INFO")

# Payment gateway callbacks act as the system role
PAYMENT_GATEWAY_ACTOR = Actor(user_id=0, role=Role.SYSTEM)

SessionFactory = Callable[[], AsyncSession]


class PaymentCallbackHandler(EventHandler):
    """Base for handlers that apply a payment collaborator callback"""

    def __init__(self, session_factory: SessionFactory, event_producer: Optional[Any] = None):
        self.session_factory = session_factory
        self.event_producer = event_producer

    def _log_result(self, event: BaseEvent, result: OperationResult, **extra: Any) -> None:
        log_extra = {
            "event_type": event.event_type,
            "event_id": event.event_id,
            "correlation_id": event.correlation_id,
            **extra,
        }
        if result.ok:
            logger.info(f"Applied {event.event_type} callback", extra=log_extra)
        else:
            failure = result.failure
            logger.warning(
                f"Ignored {event.event_type} callback: {failure.message}",
                extra={**log_extra, "reason": failure.reason, "details": failure.details},
            )


class PaymentProcessedHandler(PaymentCallbackHandler):
    """Handle payment processed events to mark the order as paid"""

    async def handle(self, event: BaseEvent) -> None:
        order_id = int(event.data["order_id"])
        status = event.data.get("status", "completed")
        target = (
            PaymentStatus.COMPLETED.value
            if status == "completed"
            else PaymentStatus.FAILED.value
        )
        async with self.session_factory() as session:
            service = OrderService(session, self.event_producer)
            result = await service.record_payment_status(
                PAYMENT_GATEWAY_ACTOR, order_id, target
            )
        self._log_result(event, result, order_id=order_id, payment_status=target)


class PaymentFailedHandler(PaymentCallbackHandler):
    """Handle payment failed events to flag the order payment as failed"""

    async def handle(self, event: BaseEvent) -> None:
        order_id = int(event.data["order_id"])
        async with self.session_factory() as session:
            service = OrderService(session, self.event_producer)
            result = await service.record_payment_status(
                PAYMENT_GATEWAY_ACTOR, order_id, PaymentStatus.FAILED.value
            )
        self._log_result(
            event,
            result,
            order_id=order_id,
            error_reason=event.data.get("error_reason", "Unknown payment failure"),
        )


class RefundProcessedHandler(PaymentCallbackHandler):
    """Handle refund processed events to complete the approved return"""

    async def handle(self, event: BaseEvent) -> None:
        return_id = int(event.data["return_id"])
        async with self.session_factory() as session:
            service = ReturnService(session, self.event_producer)
            result = await service.complete(PAYMENT_GATEWAY_ACTOR, return_id)
        self._log_result(event, result, return_id=return_id)


class FulfillmentEventConsumer:
    """Fulfillment service event consumer using local subscriber"""

    def __init__(self, session_factory: SessionFactory, event_producer: Optional[Any] = None):
        self.session_factory = session_factory
        self.event_producer = event_producer
        self.subscriber = KafkaEventSubscriber(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            group_id=settings.KAFKA_GROUP_ID,
            client_id=f"{settings.SERVICE_NAME}-consumer",
        )

    async def start(self):
        """Start consuming payment collaborator callbacks"""
        await self.subscriber.start()

        topic = settings.KAFKA_TOPIC_PAYMENT_EVENTS
        subscriptions = {
            PAYMENT_PROCESSED: PaymentProcessedHandler,
            PAYMENT_FAILED: PaymentFailedHandler,
            REFUND_PROCESSED: RefundProcessedHandler,
        }
        for event_type, handler_class in subscriptions.items():
            await self.subscriber.subscribe(
                topic=topic,
                event_type=event_type,
                handler=handler_class(self.session_factory, self.event_producer),
            )

        logger.info(
            "Started consuming fulfillment service events",
            extra={"subscriptions": [f"{topic}:{event_type}" for event_type in subscriptions]},
        )

    async def stop(self):
        """Stop consuming events"""
        await self.subscriber.stop()
        logger.info("Stopped fulfillment service event consumer")


# Consumer instance management
_consumer_instance: Optional[FulfillmentEventConsumer] = None


async def get_fulfillment_event_consumer(
    session_factory: SessionFactory, event_producer: Optional[Any] = None
) -> FulfillmentEventConsumer:
    """Get or create the fulfillment event consumer instance"""
    global _consumer_instance

    if _consumer_instance is None:
        _consumer_instance = FulfillmentEventConsumer(session_factory, event_producer)
        await _consumer_instance.start()

    return _consumer_instance


async def shutdown_fulfillment_event_consumer():
    """Shutdown the fulfillment event consumer"""
    global _consumer_instance

    if _consumer_instance:
        await _consumer_instance.stop()
        _consumer_instance = None
