"""
Fulfillment Service Event Management
Initializes and manages Kafka event publishing and payment callback consumption.
"""

from typing import Optional

from ..events.base.kafka_client import KafkaEventPublisher
from ..events.producers import FulfillmentEventProducer
from ..utils.logging import setup_fulfillment_logging as setup_logging
from .settings import get_settings

logger = setup_logging("fulfillment_service.events", log_level="INFO")

# Global instances
_kafka_publisher: Optional[KafkaEventPublisher] = None
_fulfillment_event_producer: Optional[FulfillmentEventProducer] = None


async def init_events() -> None:
    """Initialize event publishing infrastructure"""
    global _kafka_publisher, _fulfillment_event_producer

    settings = get_settings()
    if not settings.KAFKA_ENABLED:
        logger.info("Kafka disabled; service will run without event publishing")
        return

    try:
        _kafka_publisher = KafkaEventPublisher(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            client_id=f"{settings.SERVICE_NAME}-producer",
            default_topic=settings.KAFKA_TOPIC_FULFILLMENT_EVENTS,
            max_retries=10,
            retry_delay=2.0,
            enable_graceful_degradation=True,
        )

        await _kafka_publisher.start(timeout=30.0)

        _fulfillment_event_producer = FulfillmentEventProducer(
            _kafka_publisher,
            topic=settings.KAFKA_TOPIC_FULFILLMENT_EVENTS,
            source_service=settings.SERVICE_NAME,
        )

        logger.info("Event publishing infrastructure initialized successfully")

    except Exception as e:
        logger.warning(f"Event publishing initialization failed: {e}")
        logger.info("Service will continue without event publishing (degraded mode)")


async def start_event_consumers() -> None:
    """Start consuming payment gateway callbacks"""
    settings = get_settings()
    if not settings.KAFKA_ENABLED:
        return

    # Imported here: consumers depend on the service layer
    from ..events.consumers import get_fulfillment_event_consumer
    from .database import database_manager

    try:
        await get_fulfillment_event_consumer(
            database_manager.async_session_maker, _fulfillment_event_producer
        )
    except Exception as e:
        logger.warning(f"Event consumer initialization failed: {e}")


async def close_events() -> None:
    """Close event publishing and consumption infrastructure"""
    global _kafka_publisher, _fulfillment_event_producer

    from ..events.consumers import shutdown_fulfillment_event_consumer

    try:
        await shutdown_fulfillment_event_consumer()
        if _kafka_publisher:
            await _kafka_publisher.stop()
            logger.info("Event publishing infrastructure closed")
    except Exception as e:
        logger.error(f"Error closing event infrastructure: {e}")
    finally:
        _kafka_publisher = None
        _fulfillment_event_producer = None


def get_event_producer() -> Optional[FulfillmentEventProducer]:
    """Get the fulfillment event producer instance"""
    return _fulfillment_event_producer


async def health_check_events() -> bool:
    """Check if event publishing is healthy"""
    if _kafka_publisher:
        return await _kafka_publisher.health_check()
    return False
