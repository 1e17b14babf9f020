"""
Integration tests for return requests, decisions, dropoff and refund completion.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from fulfillment_service.app.core.exceptions import FailureKind
from fulfillment_service.app.events.schemas import RETURN_COMPLETED, RETURN_DECIDED, RETURN_REQUESTED
from fulfillment_service.app.models.base import utcnow
from fulfillment_service.app.models.order import OrderItem
from fulfillment_service.app.services.return_service import ReturnService
from fulfillment_service.tests.factories import order_line


@pytest.fixture
def request_return(return_service, customer):
    async def _request(item_id: int, amount: str = "40.00", reason: str = "damaged"):
        return await return_service.request_return(
            customer, item_id, reason=reason, requested_amount=Decimal(amount)
        )

    return _request


@pytest.fixture
def delivered_item(deliver_order):
    async def _delivered(unit_price: str = "100.00"):
        order = await deliver_order([order_line(unit_price)])
        return order.items[0].id

    return _delivered


class TestRequestReturn:
    @pytest.mark.asyncio
    async def test_customer_requests_refund_on_delivered_line(
        self, delivered_item, request_return, notification_service, vendor,
        mock_event_producer,
    ):
        item_id = await delivered_item()

        result = await request_return(item_id)

        assert result.ok
        request = result.value
        assert request.status == "pending"
        assert request.requested_amount == Decimal("40.00")
        assert request.dropoff_code is None
        assert (await notification_service.unread_count(vendor)).unwrap() == 1
        event_types = [c.kwargs["event_type"] for c in mock_event_producer.publish_domain_event.await_args_list]
        assert RETURN_REQUESTED in event_types

    @pytest.mark.asyncio
    async def test_request_from_a_separate_session(
        self, delivered_item, session_factory, mock_event_producer, customer, vendor
    ):
        item_id = await delivered_item()

        async with session_factory() as session:
            result = await ReturnService(session, mock_event_producer).request_return(
                customer, item_id, reason="damaged", requested_amount=Decimal("40.00")
            )
        assert result.ok, result.failure
        request_id = result.value.id

        async with session_factory() as session:
            decided = await ReturnService(session, mock_event_producer).decide(
                vendor, request_id, "approve"
            )
        assert decided.ok, decided.failure
        assert decided.value.status == "approved"
        assert decided.value.dropoff_code is not None

    @pytest.mark.asyncio
    async def test_undelivered_line_rejected(self, place_order, request_return):
        order = await place_order()

        result = await request_return(order.items[0].id)

        assert result.failure.kind == FailureKind.PRECONDITION_FAILED
        assert result.failure.reason == "item_not_delivered"

    @pytest.mark.asyncio
    async def test_window_closes_after_delivery(self, delivered_item, request_return, db_session):
        item_id = await delivered_item()
        await db_session.execute(
            update(OrderItem)
            .where(OrderItem.id == item_id)
            .values(delivered_at=utcnow() - timedelta(hours=25))
        )
        await db_session.commit()

        result = await request_return(item_id)

        assert result.failure.reason == "return_window_expired"
        assert result.failure.details["window_hours"] == 24

    @pytest.mark.asyncio
    async def test_second_active_request_is_a_duplicate(self, delivered_item, request_return):
        item_id = await delivered_item()
        first_id = (await request_return(item_id)).unwrap().id

        result = await request_return(item_id, amount="10.00")

        assert result.failure.reason == "duplicate_request"
        assert result.failure.details["existing_return_id"] == first_id

    @pytest.mark.asyncio
    async def test_amount_capped_at_line_total(self, delivered_item, request_return):
        item_id = await delivered_item("100.00")

        result = await request_return(item_id, amount="100.01")

        assert result.failure.kind == FailureKind.VALIDATION
        assert result.failure.reason == "amount_exceeds_line_total"
        assert result.failure.details["max_refundable"] == "100.00"

    @pytest.mark.asyncio
    async def test_blank_reason_rejected(self, delivered_item, request_return):
        item_id = await delivered_item()

        result = await request_return(item_id, reason="   ")

        assert result.failure.reason == "reason_required"

    @pytest.mark.asyncio
    async def test_only_the_ordering_customer_may_request(
        self, delivered_item, return_service, vendor
    ):
        item_id = await delivered_item()

        result = await return_service.request_return(
            vendor, item_id, reason="damaged", requested_amount=Decimal("10.00")
        )

        assert result.failure.kind == FailureKind.PERMISSION_DENIED


class TestDecideReturn:
    @pytest.mark.asyncio
    async def test_approval_issues_dropoff_code(
        self, delivered_item, request_return, return_service, vendor, mock_event_producer
    ):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()

        result = await return_service.decide(vendor, request.id, "approve")

        assert result.ok
        assert result.value.status == "approved"
        assert result.value.decided_by == vendor.user_id
        assert result.value.dropoff_code is not None
        assert len(result.value.dropoff_code) == 6
        event_types = [c.kwargs["event_type"] for c in mock_event_producer.publish_domain_event.await_args_list]
        assert RETURN_DECIDED in event_types

    @pytest.mark.asyncio
    async def test_second_decision_is_rejected(
        self, delivered_item, request_return, return_service, vendor, admin
    ):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()
        request_id = request.id
        await return_service.decide(vendor, request_id, "approve")

        result = await return_service.decide(admin, request_id, "reject", vendor_response="late")

        assert result.failure.reason == "already_decided"
        assert result.failure.details["current_status"] == "approved"

    @pytest.mark.asyncio
    async def test_rejection_needs_a_response(
        self, delivered_item, request_return, return_service, vendor
    ):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()

        result = await return_service.decide(vendor, request.id, "reject", vendor_response=" ")

        assert result.failure.reason == "response_required"

    @pytest.mark.asyncio
    async def test_unknown_decision(self, delivered_item, request_return, return_service, vendor):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()

        result = await return_service.decide(vendor, request.id, "maybe")

        assert result.failure.reason == "invalid_decision"

    @pytest.mark.asyncio
    async def test_other_vendor_cannot_decide(
        self, delivered_item, request_return, return_service, other_vendor
    ):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()

        result = await return_service.decide(other_vendor, request.id, "approve")

        assert result.failure.kind == FailureKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_new_request_allowed_after_rejection(
        self, delivered_item, request_return, return_service, vendor
    ):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()
        await return_service.decide(vendor, request.id, "reject", vendor_response="Item is fine")

        result = await request_return(item_id, amount="20.00")

        assert result.ok
        assert result.value.id != request.id

    @pytest.mark.asyncio
    async def test_refunds_never_exceed_line_total_cumulatively(
        self, delivered_item, request_return, return_service, vendor, system
    ):
        item_id = await delivered_item("100.00")
        first = (await request_return(item_id, amount="70.00")).unwrap()
        await return_service.decide(vendor, first.id, "approve")
        await return_service.complete(system, first.id)

        over = await request_return(item_id, amount="40.00")
        within = await request_return(item_id, amount="30.00")

        assert over.failure.reason == "amount_exceeds_line_total"
        assert over.failure.details["already_refunded"] == "70.00"
        assert within.ok


class TestDropoffAndCompletion:
    async def _approved(self, delivered_item, request_return, return_service, vendor):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()
        return (await return_service.decide(vendor, request.id, "approve")).unwrap()

    @pytest.mark.asyncio
    async def test_dropoff_code_is_single_use(
        self, delivered_item, request_return, return_service, vendor, agent
    ):
        request = await self._approved(delivered_item, request_return, return_service, vendor)
        code = request.dropoff_code

        result = await return_service.confirm_return_dropoff(agent, request.id, code)

        assert result.ok
        assert result.value.dropoff_code is None
        assert result.value.dropoff_confirmed_at is not None

        again = await return_service.confirm_return_dropoff(agent, request.id, code)
        assert again.failure.reason == "code_already_consumed"

    @pytest.mark.asyncio
    async def test_wrong_dropoff_code(
        self, delivered_item, request_return, return_service, vendor, agent
    ):
        request = await self._approved(delivered_item, request_return, return_service, vendor)
        wrong = "000000" if request.dropoff_code != "000000" else "111111"

        result = await return_service.confirm_return_dropoff(agent, request.id, wrong)

        assert result.failure.reason == "invalid_code"

    @pytest.mark.asyncio
    async def test_completion_by_payment_collaborator(
        self, delivered_item, request_return, return_service, vendor, system,
        notification_service, customer, mock_event_producer,
    ):
        request = await self._approved(delivered_item, request_return, return_service, vendor)
        request_id = request.id

        result = await return_service.complete(system, request_id)

        assert result.ok
        assert result.value.status == "completed"
        assert result.value.completed_at is not None
        event_types = [c.kwargs["event_type"] for c in mock_event_producer.publish_domain_event.await_args_list]
        assert RETURN_COMPLETED in event_types
        # approval and completion
        assert (await notification_service.unread_count(customer)).unwrap() >= 2

        again = await return_service.complete(system, request_id)
        assert again.failure.reason == "already_completed"

    @pytest.mark.asyncio
    async def test_pending_request_cannot_complete(
        self, delivered_item, request_return, return_service, system
    ):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()

        result = await return_service.complete(system, request.id)

        assert result.failure.reason == "invalid_transition"

    @pytest.mark.asyncio
    async def test_vendor_cannot_complete(
        self, delivered_item, request_return, return_service, vendor
    ):
        request = await self._approved(delivered_item, request_return, return_service, vendor)

        result = await return_service.complete(vendor, request.id)

        assert result.failure.kind == FailureKind.PERMISSION_DENIED


class TestReturnQueries:
    @pytest.mark.asyncio
    async def test_listing_is_scoped_to_the_caller(
        self, delivered_item, request_return, return_service, customer, vendor, other_vendor
    ):
        item_id = await delivered_item()
        await request_return(item_id)

        assert (await return_service.list_returns(customer)).unwrap()["total"] == 1
        assert (await return_service.list_returns(vendor)).unwrap()["total"] == 1
        assert (await return_service.list_returns(other_vendor)).unwrap()["total"] == 0

    @pytest.mark.asyncio
    async def test_pending_ages(self, delivered_item, request_return, return_service, admin):
        item_id = await delivered_item()
        request = (await request_return(item_id)).unwrap()

        ages = (await return_service.pending_return_ages(admin)).unwrap()

        assert [age["return_id"] for age in ages] == [request.id]
        assert ages[0]["age_hours"] >= 0
