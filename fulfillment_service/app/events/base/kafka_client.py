import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer  # type: ignore
from aiokafka.errors import KafkaConnectionError, KafkaError  # type: ignore
from pydantic import ValidationError

from ...core.settings import get_settings
from ...utils.logging import setup_fulfillment_logging as setup_logging
from . import BaseEvent, EventHandler, EventPublisher, EventSubscriber

logger = setup_logging(
    "fulfillment_service.events.kafka", log_level=get_settings().LOG_LEVEL
)


async def connect_with_backoff(
    connect: Callable[[], Awaitable[Any]],
    *,
    label: str,
    max_retries: int,
    retry_delay: float,
    timeout: float,
) -> bool:
    """
    Run ``connect`` until it succeeds, doubling the delay after each failed
    attempt. Returns False once the attempts are used up.
    """
    for attempt in range(1, max_retries + 1):
        logger.info(
            f"Connecting {label} to Kafka",
            extra={"attempt": attempt, "max_retries": max_retries, "operation": "kafka_connect"},
        )
        try:
            await asyncio.wait_for(connect(), timeout=timeout)
            return True
        except (KafkaConnectionError, asyncio.TimeoutError) as e:
            if attempt == max_retries:
                break
            delay = retry_delay * (2 ** (attempt - 1))
            logger.warning(f"{label} connection attempt {attempt} failed: {e}. Retrying in {delay}s")
            await asyncio.sleep(delay)

    logger.error(f"{label} could not reach Kafka after {max_retries} attempts")
    return False


class KafkaEventPublisher(EventPublisher):
    """
    Publishes fulfillment events. When the broker is unreachable and
    graceful degradation is on, events are written to the log instead
    of being lost silently.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str,
        default_topic: str = "fulfillment.events",
        max_retries: int = 20,
        retry_delay: float = 2.0,
        enable_graceful_degradation: bool = True,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.default_topic = default_topic
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.enable_graceful_degradation = enable_graceful_degradation
        self.producer: Optional[AIOKafkaProducer] = None
        self.is_connected = False
        self._lock = asyncio.Lock()

    async def start(self, timeout: float = 30.0) -> None:
        async with self._lock:
            if self.is_connected:
                return
            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                client_id=self.client_id,
                value_serializer=lambda value: json.dumps(value, default=str).encode("utf-8"),
                key_serializer=lambda key: key.encode("utf-8") if key else None,
                retry_backoff_ms=1000,
                request_timeout_ms=30000,
            )
            self.is_connected = await connect_with_backoff(
                self.producer.start,
                label="producer",
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                timeout=timeout,
            )
            if not self.is_connected:
                logger.error("Publisher running in degraded mode; events will only be logged")

    async def stop(self) -> None:
        async with self._lock:
            producer, self.producer = self.producer, None
            self.is_connected = False
            if producer is None:
                return
            try:
                await producer.stop()
                logger.info("Kafka producer stopped")
            except KafkaError as e:
                logger.warning("Error stopping Kafka producer", extra={"error": str(e)})

    def _log_instead(self, event: BaseEvent, payload: Dict[str, Any], reason: str) -> None:
        logger.warning(
            f"Event {event.event_type} not published ({reason}); logging payload",
            extra={"event_id": event.event_id, "event_type": event.event_type, "event_data": payload},
        )

    async def publish(self, event: BaseEvent, topic: Optional[str] = None) -> None:
        payload = event.model_dump(mode="json")
        topic = topic or self.default_topic

        if not self.is_connected or self.producer is None:
            if not self.enable_graceful_degradation:
                raise KafkaConnectionError("Kafka producer not connected")
            self._log_instead(event, payload, "broker unavailable")
            return

        try:
            # Keyed by correlation id so one request's events stay ordered
            await self.producer.send_and_wait(topic, value=payload, key=event.correlation_id)
        except KafkaError as e:
            if not self.enable_graceful_degradation:
                raise
            self._log_instead(event, payload, str(e))
            return

        logger.info(
            "Published event",
            extra={
                "event_type": event.event_type,
                "topic": topic,
                "event_id": event.event_id,
                "correlation_id": event.correlation_id,
            },
        )

    async def health_check(self) -> bool:
        if self.producer is None or not self.is_connected:
            return False
        try:
            metadata = await self.producer.client.fetch_all_metadata()
        except (KafkaError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Kafka health check failed", extra={"error": str(e)})
            return False
        return len(metadata.brokers()) > 0


class KafkaEventSubscriber(EventSubscriber):
    """
    Routes consumed messages to handlers by ``event_type``. Each topic gets
    one consumer task; several event types may share a topic.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        client_id: str,
        max_retries: int = 5,
        retry_delay: float = 2.0,
        enable_graceful_degradation: bool = True,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.client_id = client_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.enable_graceful_degradation = enable_graceful_degradation
        self.consumers: Dict[str, AIOKafkaConsumer] = {}
        self.handlers: Dict[str, List[EventHandler]] = {}
        self._tasks: List[asyncio.Task] = []
        self.is_connected = False

    async def start(self, timeout: float = 30.0) -> None:
        """Probe the broker once so subscribe() knows whether to bother."""
        probe = AIOKafkaConsumer(
            bootstrap_servers=self.bootstrap_servers,
            group_id=f"{self.group_id}-probe",
            client_id=f"{self.client_id}-probe",
        )
        self.is_connected = await connect_with_backoff(
            probe.start,
            label="subscriber",
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            timeout=timeout,
        )
        await probe.stop()

        if not self.is_connected and not self.enable_graceful_degradation:
            raise KafkaConnectionError(f"Could not connect to Kafka at {self.bootstrap_servers}")

    async def stop(self) -> None:
        self.is_connected = False
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

        for topic, consumer in self.consumers.items():
            try:
                await consumer.stop()
            except KafkaError as e:
                logger.warning("Error stopping Kafka consumer", extra={"topic": topic, "error": str(e)})
        self.consumers.clear()
        logger.info("Kafka consumers stopped")

    async def subscribe(self, topic: str, event_type: str, handler: EventHandler) -> None:
        if not self.is_connected:
            logger.warning(f"Not subscribing to {event_type}: Kafka not connected")
            return

        self.handlers.setdefault(event_type, []).append(handler)
        if topic in self.consumers:
            return

        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            client_id=f"{self.client_id}-{topic}",
            value_deserializer=lambda raw: json.loads(raw.decode("utf-8")),
            enable_auto_commit=True,
            auto_offset_reset="earliest",
        )
        try:
            await consumer.start()
        except KafkaError as e:
            logger.error("Failed to subscribe to topic", extra={"topic": topic, "error": str(e)})
            if not self.enable_graceful_degradation:
                raise
            return

        self.consumers[topic] = consumer
        self._tasks.append(asyncio.create_task(self._consume(topic, consumer)))
        logger.info("Subscribed", extra={"topic": topic, "event_type": event_type})

    async def dispatch(self, event_data: Dict[str, Any]) -> None:
        """Hand one decoded message to every handler registered for its type."""
        event_type = event_data.get("event_type")
        handlers = self.handlers.get(event_type) if isinstance(event_type, str) else None
        if not handlers:
            return

        try:
            event = BaseEvent(**event_data)
        except ValidationError as e:
            logger.warning("Dropping malformed event", extra={"event_type": event_type, "error": str(e)})
            return

        for handler in handlers:
            try:
                await handler.handle(event)
            except Exception:
                # Remaining handlers still run
                logger.exception(
                    "Event handler failed",
                    extra={
                        "event_type": event_type,
                        "event_id": event.event_id,
                        "correlation_id": event.correlation_id,
                    },
                )

    async def _consume(self, topic: str, consumer: AIOKafkaConsumer) -> None:
        try:
            async for message in consumer:
                if not isinstance(message.value, dict):
                    logger.warning("Skipping non-object message", extra={"topic": topic})
                    continue
                await self.dispatch(message.value)
        except KafkaError as e:
            logger.error("Kafka consumer stopped on error", extra={"topic": topic, "error": str(e)})
