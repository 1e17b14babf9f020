"""
Unit tests for the Kafka publisher and subscriber, with the broker mocked out.
"""

from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest
from aiokafka.errors import KafkaConnectionError, KafkaError

from fulfillment_service.app.events.base import BaseEvent, EventHandler
from fulfillment_service.app.events.base.kafka_client import (
    KafkaEventPublisher,
    KafkaEventSubscriber,
    connect_with_backoff,
)
from fulfillment_service.app.events.producers import FulfillmentEventProducer
from fulfillment_service.app.events.schemas import PayoutRequestedEventData


class RecordingHandler(EventHandler):
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def handle(self, event: BaseEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("handler blew up")


def make_publisher(**kwargs) -> KafkaEventPublisher:
    return KafkaEventPublisher(bootstrap_servers="localhost:9092", client_id="test", **kwargs)


def make_subscriber() -> KafkaEventSubscriber:
    subscriber = KafkaEventSubscriber(
        bootstrap_servers="localhost:9092", group_id="test-group", client_id="test"
    )
    subscriber.is_connected = True
    return subscriber


class TestConnectWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_after_retry(self):
        connect = AsyncMock(side_effect=[KafkaConnectionError("down"), None])

        connected = await connect_with_backoff(
            connect, label="test", max_retries=3, retry_delay=0.0, timeout=1.0
        )

        assert connected is True
        assert connect.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up(self):
        connect = AsyncMock(side_effect=KafkaConnectionError("down"))

        connected = await connect_with_backoff(
            connect, label="test", max_retries=2, retry_delay=0.0, timeout=1.0
        )

        assert connected is False
        assert connect.await_count == 2


class TestPublisher:
    @pytest.mark.asyncio
    async def test_degraded_publish_does_not_raise(self):
        publisher = make_publisher()

        await publisher.publish(BaseEvent(event_type="payout.requested", data={"payout_id": 1}))

        assert await publisher.health_check() is False

    @pytest.mark.asyncio
    async def test_strict_publish_raises_when_disconnected(self):
        publisher = make_publisher(enable_graceful_degradation=False)

        with pytest.raises(KafkaConnectionError):
            await publisher.publish(BaseEvent(event_type="payout.requested"))

    @pytest.mark.asyncio
    async def test_publish_keys_by_correlation_id(self):
        publisher = make_publisher(default_topic="fulfillment.events")
        publisher.producer = Mock(send_and_wait=AsyncMock())
        publisher.is_connected = True

        await publisher.publish(
            BaseEvent(event_type="order.cancelled", correlation_id="req-1", data={"order_id": 5})
        )

        args, kwargs = publisher.producer.send_and_wait.call_args
        assert args == ("fulfillment.events",)
        assert kwargs["key"] == "req-1"
        assert kwargs["value"]["data"] == {"order_id": 5}

    @pytest.mark.asyncio
    async def test_broker_error_is_logged_when_degrading(self):
        publisher = make_publisher()
        publisher.producer = Mock(send_and_wait=AsyncMock(side_effect=KafkaError()))
        publisher.is_connected = True

        await publisher.publish(BaseEvent(event_type="order.cancelled"))


class TestProducer:
    @pytest.mark.asyncio
    async def test_domain_event_envelope(self):
        publisher = Mock(publish=AsyncMock())
        producer = FulfillmentEventProducer(publisher, topic="fulfillment.events")

        await producer.publish_domain_event(
            event_type="payout.requested",
            data=PayoutRequestedEventData(
                payout_id=7,
                vendor_id=201,
                amount="300.00",
                reference_code="PO-201-00001",
                requested_at=datetime(2026, 1, 5, 12, 0),
            ),
            correlation_id="req-9",
        )

        event = publisher.publish.call_args.args[0]
        assert publisher.publish.call_args.kwargs["topic"] == "fulfillment.events"
        assert event.event_type == "payout.requested"
        assert event.source_service == "fulfillment-service"
        assert event.correlation_id == "req-9"
        assert event.data["payout_id"] == 7


class TestSubscriberDispatch:
    @pytest.mark.asyncio
    async def test_routes_by_event_type(self):
        subscriber = make_subscriber()
        processed, failed = RecordingHandler(), RecordingHandler()
        subscriber.handlers = {"payment.processed": [processed], "payment.failed": [failed]}

        await subscriber.dispatch({"event_type": "payment.processed", "data": {"order_id": 1}})

        assert [event.data for event in processed.events] == [{"order_id": 1}]
        assert failed.events == []

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_messages_are_dropped(self):
        subscriber = make_subscriber()
        handler = RecordingHandler()
        subscriber.handlers = {"payment.processed": [handler]}

        await subscriber.dispatch({"event_type": "something.else"})
        await subscriber.dispatch({"data": {}})
        await subscriber.dispatch({"event_type": "payment.processed", "data": "not-a-dict"})

        assert handler.events == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        subscriber = make_subscriber()
        broken, healthy = RecordingHandler(fail=True), RecordingHandler()
        subscriber.handlers = {"refund.processed": [broken, healthy]}

        await subscriber.dispatch({"event_type": "refund.processed", "data": {"return_id": 3}})

        assert len(broken.events) == 1
        assert len(healthy.events) == 1

    @pytest.mark.asyncio
    async def test_subscribe_skipped_when_disconnected(self):
        subscriber = make_subscriber()
        subscriber.is_connected = False

        await subscriber.subscribe("payments.events", "payment.processed", RecordingHandler())

        assert subscriber.handlers == {}
        assert subscriber.consumers == {}
