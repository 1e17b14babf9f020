"""
Integration tests for order placement, item fulfillment, pickup handover,
cancellation and payment callbacks against a real SQLite database.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from fulfillment_service.app.core.exceptions import FailureKind, PreconditionFailed
from fulfillment_service.app.events.schemas import (
    ORDER_CANCELLED,
    ORDER_HANDOVER_CONFIRMED,
    ORDER_ITEM_STATUS_CHANGED,
    ORDER_STATUS_CHANGED,
)
from fulfillment_service.app.models.order import MIXED_STATUS
from fulfillment_service.app.services.order_service import OrderService
from fulfillment_service.app.services.results import Actor, Role
from fulfillment_service.tests.factories import (
    AGENT_ID,
    CUSTOMER_ID,
    OTHER_VENDOR_ID,
    VENDOR_ID,
    order_line,
)


def published_types(producer) -> list:
    return [call.kwargs["event_type"] for call in producer.publish_domain_event.await_args_list]


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_place_order_snapshots_commission(self, place_order, configure_vendor):
        await configure_vendor(commission_rate="0.10")

        order = await place_order([order_line("2000.00")])

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.customer_id == CUSTOMER_ID
        assert order.total_amount == Decimal("2000.00")
        item = order.items[0]
        assert item.status == "pending"
        assert item.commission_rate == Decimal("0.1000")
        assert item.commission_amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_unknown_vendor_gets_default_commission(self, place_order, test_settings):
        order = await place_order([order_line("50.00", vendor_id=777)])

        assert order.items[0].commission_rate == test_settings.DEFAULT_COMMISSION_RATE

    @pytest.mark.asyncio
    async def test_total_includes_discount_tax_and_shipping(self, place_order):
        order = await place_order(
            [order_line("40.00", quantity=2), order_line("20.00", vendor_id=OTHER_VENDOR_ID)],
            discount_amount=Decimal("10.00"),
            tax_amount=Decimal("5.50"),
            shipping_cost=Decimal("3.00"),
        )

        assert order.subtotal == Decimal("100.00")
        assert order.total_amount == Decimal("98.50")
        assert len(order.items) == 2

    @pytest.mark.asyncio
    async def test_total_mismatch_rejected(self, order_service, customer):
        result = await order_service.place_order(
            customer, items=[order_line("10.00")], total_amount=Decimal("12.00")
        )

        assert result.failure.kind == FailureKind.VALIDATION
        assert result.failure.reason == "total_mismatch"
        assert result.failure.details["expected_total"] == "10.00"

    @pytest.mark.asyncio
    async def test_empty_order_rejected(self, order_service, customer):
        result = await order_service.place_order(customer, items=[], total_amount=Decimal("0"))

        assert result.failure.reason == "empty_order"

    @pytest.mark.asyncio
    async def test_vendor_cannot_place_orders(self, order_service, vendor):
        result = await order_service.place_order(
            vendor, items=[order_line()], total_amount=Decimal("100.00")
        )

        assert result.failure.kind == FailureKind.PERMISSION_DENIED


class TestItemFulfillment:
    @pytest.mark.asyncio
    async def test_vendor_advances_one_edge_and_order_follows(
        self, order_service, place_order, vendor, mock_event_producer
    ):
        order = await place_order()
        item_id = order.items[0].id

        result = await order_service.advance_item_status(vendor, item_id, "processing")

        assert result.ok
        assert result.value.status == "processing"
        order = (await order_service.get_order(vendor, order.id)).unwrap()
        assert order.status == "processing"
        assert order.pickup_code is not None
        assert len(order.pickup_code) == 6
        assert ORDER_ITEM_STATUS_CHANGED in published_types(mock_event_producer)
        assert ORDER_STATUS_CHANGED in published_types(mock_event_producer)

    @pytest.mark.asyncio
    async def test_skipping_a_state_is_rejected(self, order_service, place_order, admin):
        order = await place_order()
        order_id, item_id = order.id, order.items[0].id

        result = await order_service.advance_item_status(admin, item_id, "delivered")

        assert result.failure.kind == FailureKind.PRECONDITION_FAILED
        assert result.failure.details["current_status"] == "pending"
        assert result.failure.details["allowed_statuses"] == ["cancelled", "processing"]
        order = (await order_service.get_order(admin, order_id)).unwrap()
        assert order.items[0].status == "pending"

    @pytest.mark.asyncio
    async def test_backward_move_is_rejected(self, order_service, place_order, admin):
        order = await place_order()
        item_id = order.items[0].id
        await order_service.advance_item_status(admin, item_id, "processing")
        await order_service.advance_item_status(admin, item_id, "shipped")

        result = await order_service.advance_item_status(admin, item_id, "processing")

        assert result.failure.reason == "invalid_transition"

    @pytest.mark.asyncio
    async def test_stale_expected_status_is_a_conflict(self, order_service, place_order, vendor):
        order = await place_order()
        item_id = order.items[0].id
        await order_service.advance_item_status(vendor, item_id, "processing")

        result = await order_service.advance_item_status(
            vendor, item_id, "shipped", expected_status="pending"
        )

        assert result.failure.kind == FailureKind.CONFLICT
        assert result.failure.details["current_status"] == "processing"

    @pytest.mark.asyncio
    async def test_advance_from_a_separate_session(
        self, place_order, session_factory, mock_event_producer, vendor
    ):
        order = await place_order()
        order_id, item_id = order.id, order.items[0].id

        async with session_factory() as session:
            service = OrderService(session, mock_event_producer)
            result = await service.advance_item_status(vendor, item_id, "processing")

        assert result.ok, result.failure
        assert result.value.status == "processing"
        async with session_factory() as session:
            reloaded = (await OrderService(session).get_order(vendor, order_id)).unwrap()
        assert reloaded.status == "processing"
        assert reloaded.pickup_code is not None

    @pytest.mark.asyncio
    async def test_racing_ship_and_cancel_only_one_wins(
        self, order_service, place_order, session_factory, mock_event_producer, vendor, admin
    ):
        order = await place_order()
        order_id, item_id = order.id, order.items[0].id
        (await order_service.advance_item_status(vendor, item_id, "processing")).unwrap()

        async def move(actor: Actor, target: str):
            async with session_factory() as session:
                service = OrderService(session, mock_event_producer)
                return await service.advance_item_status(
                    actor, item_id, target, expected_status="processing"
                )

        results = await asyncio.gather(move(admin, "shipped"), move(vendor, "cancelled"))

        winners = [result for result in results if result.ok]
        losers = [result for result in results if not result.ok]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].failure.kind == FailureKind.CONFLICT
        async with session_factory() as session:
            reloaded = (await OrderService(session).get_order(admin, order_id)).unwrap()
        assert reloaded.items[0].status == winners[0].value.status
        assert reloaded.status == winners[0].value.status

    @pytest.mark.asyncio
    async def test_other_vendor_cannot_touch_the_line(
        self, order_service, place_order, other_vendor
    ):
        order = await place_order()

        result = await order_service.advance_item_status(
            other_vendor, order.items[0].id, "processing"
        )

        assert result.failure.kind == FailureKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_disagreeing_lines_display_as_mixed(self, order_service, place_order, vendor):
        order = await place_order(
            [order_line("10.00"), order_line("20.00", vendor_id=OTHER_VENDOR_ID)]
        )
        own_item = next(item for item in order.items if item.vendor_id == VENDOR_ID)

        await order_service.advance_item_status(vendor, own_item.id, "processing")

        order = (await order_service.get_order(vendor, order.id)).unwrap()
        assert order.status == "pending"
        assert order.display_status == MIXED_STATUS

    @pytest.mark.asyncio
    async def test_vendor_item_listing(self, order_service, place_order, vendor):
        await place_order([order_line("10.00"), order_line("20.00", vendor_id=OTHER_VENDOR_ID)])

        listing = (await order_service.list_vendor_items(vendor)).unwrap()

        assert listing["total"] == 1
        assert listing["items"][0].vendor_id == VENDOR_ID


class TestPickupHandover:
    async def _ready(self, order_service, place_order, admin, lines=None):
        order = await place_order(lines)
        for item in list(order.items):
            await order_service.advance_item_status(admin, item.id, "processing")
            await order_service.advance_item_status(admin, item.id, "ready_for_pickup")
        return (await order_service.get_order(admin, order.id)).unwrap()

    @pytest.mark.asyncio
    async def test_handover_delivers_every_line_and_consumes_the_code(
        self, order_service, place_order, admin, agent, mock_event_producer
    ):
        order = await self._ready(
            order_service,
            place_order,
            admin,
            [order_line("10.00"), order_line("20.00", vendor_id=OTHER_VENDOR_ID)],
        )
        code = order.pickup_code

        result = await order_service.verify_and_consume_code(agent, order.id, code)

        assert result.ok
        delivered = result.value
        assert delivered.status == "delivered"
        assert delivered.pickup_code is None
        assert delivered.handover_confirmed_at is not None
        assert {item.status for item in delivered.items} == {"delivered"}
        assert all(item.delivered_at is not None for item in delivered.items)
        assert ORDER_HANDOVER_CONFIRMED in published_types(mock_event_producer)

        again = await order_service.verify_and_consume_code(agent, order.id, code)
        assert again.failure.reason == "code_already_consumed"

    @pytest.mark.asyncio
    async def test_wrong_code_rejected(self, order_service, place_order, admin, agent):
        order = await self._ready(order_service, place_order, admin)
        wrong = "000000" if order.pickup_code != "000000" else "111111"

        result = await order_service.verify_and_consume_code(agent, order.id, wrong)

        assert result.failure.reason == "invalid_code"

    @pytest.mark.asyncio
    async def test_items_must_be_ready(self, order_service, place_order, admin, agent):
        order = await place_order()
        await order_service.advance_item_status(admin, order.items[0].id, "processing")
        order = (await order_service.get_order(admin, order.id)).unwrap()

        result = await order_service.verify_and_consume_code(agent, order.id, order.pickup_code)

        assert result.failure.reason == "items_not_ready"

    @pytest.mark.asyncio
    async def test_only_assigned_agent_confirms(self, order_service, place_order, admin):
        order = await self._ready(order_service, place_order, admin)
        stranger = Actor(user_id=AGENT_ID + 1, role=Role.AGENT)

        result = await order_service.verify_and_consume_code(stranger, order.id, order.pickup_code)

        assert result.failure.kind == FailureKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_issue_pickup_code_returns_active_code(self, order_service, place_order, admin):
        order = await self._ready(order_service, place_order, admin)

        code = (await order_service.issue_pickup_code(admin, order.id)).unwrap()

        assert code == order.pickup_code

    @pytest.mark.asyncio
    async def test_code_space_exhaustion_is_a_conflict(
        self, db_session, mock_event_producer, place_order, admin
    ):
        fixed = OrderService(db_session, mock_event_producer, code_generator=lambda: "424242")
        first = await place_order()
        second = await place_order()
        second_item_id = second.items[0].id

        assert (await fixed.advance_item_status(admin, first.items[0].id, "processing")).ok
        result = await fixed.advance_item_status(admin, second_item_id, "processing")

        assert result.failure.kind == FailureKind.CONFLICT
        assert result.failure.reason == "pickup_code_exhausted"
        item = (await fixed.list_vendor_items(admin, vendor_id=VENDOR_ID)).unwrap()["items"]
        assert {i.id: i.status for i in item}[second_item_id] == "pending"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_customer_cancels_pending_order(
        self, order_service, notification_service, place_order, customer, vendor,
        mock_event_producer,
    ):
        order = await place_order()

        result = await order_service.cancel_order(customer, order.id)

        assert result.ok
        assert result.value.status == "cancelled"
        assert result.value.items[0].status == "cancelled"
        assert ORDER_CANCELLED in published_types(mock_event_producer)
        assert (await notification_service.unread_count(customer)).unwrap() == 1
        assert (await notification_service.unread_count(vendor)).unwrap() == 1

    @pytest.mark.asyncio
    async def test_shipped_order_cannot_be_cancelled(
        self, order_service, place_order, admin, customer
    ):
        order = await place_order()
        order_id, item_id = order.id, order.items[0].id
        await order_service.advance_item_status(admin, item_id, "processing")
        await order_service.advance_item_status(admin, item_id, "shipped")

        result = await order_service.cancel_order(customer, order_id)

        assert result.failure.kind == FailureKind.PRECONDITION_FAILED
        assert result.failure.details["current_status"] == "shipped"

    @pytest.mark.asyncio
    async def test_dispatched_line_blocks_cancel_of_mixed_order(
        self, order_service, place_order, admin, customer
    ):
        order = await place_order(
            [order_line("40.00"), order_line("60.00", vendor_id=OTHER_VENDOR_ID)]
        )
        order_id = order.id
        shipped_id, pending_id = order.items[0].id, order.items[1].id
        await order_service.advance_item_status(admin, shipped_id, "processing")
        await order_service.advance_item_status(admin, shipped_id, "shipped")

        result = await order_service.cancel_order(customer, order_id)

        assert result.failure.kind == FailureKind.PRECONDITION_FAILED
        assert result.failure.reason == "items_already_dispatched"
        assert result.failure.details["dispatched_items"] == {shipped_id: "shipped"}
        order = (await order_service.get_order(admin, order_id)).unwrap()
        statuses = {item.id: item.status for item in order.items}
        assert statuses == {shipped_id: "shipped", pending_id: "pending"}

    @pytest.mark.asyncio
    async def test_cancelled_order_rejects_item_moves(
        self, order_service, place_order, customer, admin
    ):
        order = await place_order()
        item_id = order.items[0].id
        await order_service.cancel_order(customer, order.id)

        result = await order_service.advance_item_status(admin, item_id, "processing")

        assert result.failure.kind == FailureKind.PRECONDITION_FAILED


class TestPaymentStatus:
    @pytest.mark.asyncio
    async def test_payment_callback_flips_flag(self, order_service, place_order, system):
        order = await place_order()

        result = await order_service.record_payment_status(system, order.id, "completed")

        assert result.value.payment_status == "completed"
        assert result.value.paid_at is not None
        assert result.value.status == "pending"

    @pytest.mark.asyncio
    async def test_payment_status_moved_underneath_is_a_conflict(
        self, order_service, place_order, system
    ):
        order = await place_order()
        order_id = order.id
        order_service.order_repository.compare_and_set_payment = AsyncMock(return_value=False)

        result = await order_service.record_payment_status(system, order_id, "completed")

        assert result.failure.kind == FailureKind.CONFLICT
        assert result.failure.details["expected_payment_status"] == "pending"

    @pytest.mark.asyncio
    async def test_duplicate_payment_callbacks_apply_once(
        self, place_order, session_factory, system
    ):
        order_id = (await place_order()).id

        async def record(new_status: str):
            async with session_factory() as session:
                return await OrderService(session).record_payment_status(
                    system, order_id, new_status
                )

        results = await asyncio.gather(record("completed"), record("completed"))

        winners = [result for result in results if result.ok]
        assert len(winners) == 1
        loser = next(result for result in results if not result.ok)
        assert loser.failure.kind in (FailureKind.CONFLICT, FailureKind.PRECONDITION_FAILED)

    @pytest.mark.asyncio
    async def test_invalid_payment_edge(self, order_service, place_order, system):
        order = await place_order()

        result = await order_service.record_payment_status(system, order.id, "refunded")

        assert result.failure.reason == "invalid_transition"

    @pytest.mark.asyncio
    async def test_customer_cannot_mark_paid(self, order_service, place_order, customer):
        order = await place_order()

        result = await order_service.record_payment_status(customer, order.id, "completed")

        assert result.failure.kind == FailureKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_amounts_frozen_after_payment(
        self, order_service, place_order, system, db_session
    ):
        order = await place_order()
        paid = (await order_service.record_payment_status(system, order.id, "completed")).unwrap()

        paid.total_amount = Decimal("1.00")
        with pytest.raises(PreconditionFailed) as exc_info:
            await db_session.flush()
        await db_session.rollback()

        assert exc_info.value.reason == "order_amounts_frozen"
        assert exc_info.value.details["fields"] == ["total_amount"]
