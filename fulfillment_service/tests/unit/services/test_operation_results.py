"""
Unit tests for operation results and the unit of work decorator.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.exc import OperationalError

from fulfillment_service.app.core.exceptions import (
    ConflictError,
    FailureKind,
    OperationFailedError,
)
from fulfillment_service.app.events.schemas import OrderStatusChangedEventData
from fulfillment_service.app.services.results import (
    OperationResult,
    TransactionalService,
    unit_of_work,
)


def status_event() -> OrderStatusChangedEventData:
    from datetime import datetime

    return OrderStatusChangedEventData(
        order_id=1,
        order_number="ORD-1",
        customer_id=101,
        old_status="pending",
        new_status="processing",
        changed_at=datetime(2026, 1, 1),
    )


class ProbeService(TransactionalService):
    @unit_of_work("succeed")
    async def succeed(self):
        self.stage_event("order.status_changed", status_event(), correlation_id=1)
        return "done"

    @unit_of_work("reject")
    async def reject(self):
        self.stage_event("order.status_changed", status_event())
        raise ConflictError("Item was updated concurrently", details={"order_item_id": 9})

    @unit_of_work("explode")
    async def explode(self):
        raise OperationalError("UPDATE order_items", {}, Exception("database is locked"))


class TestUnitOfWork:
    @pytest.fixture
    def session(self):
        session = Mock()
        session.commit = AsyncMock()
        session.rollback = AsyncMock()
        return session

    @pytest.fixture
    def producer(self):
        producer = Mock()
        producer.publish_domain_event = AsyncMock()
        return producer

    @pytest.mark.asyncio
    async def test_success_commits_then_publishes(self, session, producer):
        result = await ProbeService(session, producer).succeed()

        assert result.ok
        assert result.value == "done"
        session.commit.assert_awaited_once()
        producer.publish_domain_event.assert_awaited_once()
        kwargs = producer.publish_domain_event.await_args.kwargs
        assert kwargs["event_type"] == "order.status_changed"
        assert kwargs["correlation_id"] == "1"

    @pytest.mark.asyncio
    async def test_business_failure_rolls_back_without_events(self, session, producer):
        result = await ProbeService(session, producer).reject()

        assert not result.ok
        assert result.failure.kind == FailureKind.CONFLICT
        assert result.failure.reason == "stale_state"
        assert result.failure.details == {"order_item_id": 9}
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()
        producer.publish_domain_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_error_is_generic(self, session, producer):
        result = await ProbeService(session, producer).explode()

        assert result.failure.kind == FailureKind.PERSISTENCE
        assert "locked" not in result.failure.message
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_undo_commit(self, session, producer):
        producer.publish_domain_event.side_effect = RuntimeError("broker down")

        result = await ProbeService(session, producer).succeed()

        assert result.ok
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_runs_without_producer(self, session):
        result = await ProbeService(session).succeed()

        assert result.ok


class TestOperationResult:
    def test_unwrap_success(self):
        assert OperationResult.success(5).unwrap() == 5

    def test_unwrap_failure_raises(self):
        from fulfillment_service.app.services.results import PERSISTENCE_FAILURE

        with pytest.raises(OperationFailedError) as exc_info:
            OperationResult.failed(PERSISTENCE_FAILURE).unwrap()

        assert exc_info.value.failure is PERSISTENCE_FAILURE
