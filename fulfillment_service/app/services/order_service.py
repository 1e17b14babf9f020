"""
Order service: placement, item fulfillment, pickup handover, cancellation
and payment status callbacks.
"""

import secrets
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    ValidationError,
)
from ..core.settings import get_settings
from ..events.schemas import (
    ORDER_CANCELLED,
    ORDER_HANDOVER_CONFIRMED,
    ORDER_ITEM_STATUS_CHANGED,
    ORDER_STATUS_CHANGED,
    OrderCancelledEventData,
    OrderHandoverConfirmedEventData,
    OrderItemStatusChangedEventData,
    OrderStatusChangedEventData,
)
from ..models.base import utcnow
from ..models.notification import NotificationType
from ..models.order import FulfillmentStatus, Order, OrderItem, PaymentStatus
from ..repository.order_repository import OrderRepository
from ..repository.vendor_repository import VendorAccountRepository
from ..utils.codes import generate_numeric_code, generate_reference
from ..utils.logging import setup_fulfillment_logging as setup_logging
from ..utils.money import ZERO, to_money
from .notification_service import NotificationDispatcher
from .results import Actor, Role, TransactionalService, unit_of_work
from .state_machine import (
    CANCELLABLE_ORDER_STATES,
    CUSTOMER_VISIBLE_MILESTONES,
    PAYMENT_TRANSITIONS,
    PICKUP_CODE_STATES,
    derive_order_status,
    ensure_item_actor,
    ensure_item_transition,
    ensure_transition,
)

logger = setup_logging("fulfillment_service.orders", log_level="INFO")


class OrderBusinessRules:
    """Business rules for order placement"""

    def __init__(self):
        self.max_order_items = 50
        self.max_item_quantity = 99


def _status_label(status: str) -> str:
    return status.replace("_", " ")


class OrderService(TransactionalService):
    def __init__(
        self,
        session: AsyncSession,
        event_producer: Optional[Any] = None,
        code_generator: Optional[Callable[[], str]] = None,
    ):
        super().__init__(session, event_producer)
        self.settings = get_settings()
        self.order_repository = OrderRepository(session)
        self.vendor_repository = VendorAccountRepository(session)
        self.notifications = NotificationDispatcher(session)
        self.business_rules = OrderBusinessRules()
        self.code_generator = code_generator or (
            lambda: generate_numeric_code(self.settings.PICKUP_CODE_LENGTH)
        )

    # ------------------------------------------------------------------
    # Placement and reads
    # ------------------------------------------------------------------

    def _validate_items(self, items: List[Dict[str, Any]]) -> None:
        if not items:
            raise ValidationError(
                "Order must contain at least one item", reason="empty_order"
            )

        if len(items) > self.business_rules.max_order_items:
            raise ValidationError(
                f"Order cannot contain more than {self.business_rules.max_order_items} items",
                reason="too_many_items",
                details={"limit": self.business_rules.max_order_items},
            )

        for item in items:
            quantity = item.get("quantity", 0)
            if quantity <= 0 or quantity > self.business_rules.max_item_quantity:
                raise ValidationError(
                    "Item quantity must be between 1 and "
                    f"{self.business_rules.max_item_quantity}",
                    reason="invalid_quantity",
                    details={"product_id": item.get("product_id"), "quantity": quantity},
                )
            if to_money(item.get("unit_price")) <= ZERO:
                raise ValidationError(
                    "Item unit price must be greater than 0",
                    reason="invalid_price",
                    details={"product_id": item.get("product_id")},
                )

    @unit_of_work("place_order")
    async def place_order(
        self,
        actor: Actor,
        items: List[Dict[str, Any]],
        total_amount: Decimal,
        discount_amount: Decimal = ZERO,
        tax_amount: Decimal = ZERO,
        shipping_cost: Decimal = ZERO,
        customer_id: Optional[int] = None,
        agent_id: Optional[int] = None,
        currency: str = "USD",
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create an order at checkout completion.

        The supplied total must equal subtotal - discount + tax + shipping.
        Each line snapshots its vendor's current commission rate.
        """
        if actor.role == Role.CUSTOMER:
            customer_id = actor.user_id
        elif not actor.is_privileged or customer_id is None:
            raise PermissionDenied(
                "Only customers place orders for themselves",
                details={"role": actor.role.value},
            )

        self._validate_items(items)

        discount_amount = to_money(discount_amount)
        tax_amount = to_money(tax_amount)
        shipping_cost = to_money(shipping_cost)
        for field_name, amount in (
            ("discount_amount", discount_amount),
            ("tax_amount", tax_amount),
            ("shipping_cost", shipping_cost),
        ):
            if amount < ZERO:
                raise ValidationError(
                    f"{field_name} cannot be negative",
                    reason="negative_amount",
                    details={"field": field_name},
                )

        lines: List[Dict[str, Any]] = []
        subtotal = ZERO
        for item in items:
            unit_price = to_money(item["unit_price"])
            line_total = unit_price * item["quantity"]
            account = await self.vendor_repository.get_or_create(
                item["vendor_id"], self.settings.DEFAULT_COMMISSION_RATE
            )
            commission_rate = Decimal(account.commission_rate)
            lines.append(
                {
                    **item,
                    "unit_price": unit_price,
                    "commission_rate": commission_rate,
                    "commission_amount": to_money(line_total * commission_rate),
                }
            )
            subtotal += line_total

        if discount_amount > subtotal:
            raise ValidationError(
                "Discount cannot exceed the subtotal",
                reason="discount_exceeds_subtotal",
                details={"subtotal": str(subtotal), "discount_amount": str(discount_amount)},
            )

        expected_total = to_money(subtotal - discount_amount + tax_amount + shipping_cost)
        if to_money(total_amount) != expected_total:
            raise ValidationError(
                "Order total does not match subtotal - discount + tax + shipping",
                reason="total_mismatch",
                details={
                    "expected_total": str(expected_total),
                    "provided_total": str(to_money(total_amount)),
                },
            )

        order = await self.order_repository.create_order(
            customer_id=customer_id,
            order_number=generate_reference("ORD"),
            items=lines,
            subtotal=to_money(subtotal),
            discount_amount=discount_amount,
            tax_amount=tax_amount,
            shipping_cost=shipping_cost,
            total_amount=expected_total,
            agent_id=agent_id,
            currency=currency,
            coupon_code=coupon_code,
            notes=notes,
        )

        logger.info(
            "Order placed successfully.",
            extra={
                "order_id": order.id,
                "order_number": order.order_number,
                "customer_id": customer_id,
                "total_amount": str(expected_total),
                "items_count": len(lines),
            },
        )
        return order

    def _can_view(self, actor: Actor, order: Order) -> bool:
        if actor.is_privileged:
            return True
        if actor.role == Role.CUSTOMER:
            return order.customer_id == actor.user_id
        if actor.role == Role.AGENT:
            return order.agent_id == actor.user_id
        if actor.role == Role.VENDOR:
            return any(item.vendor_id == actor.user_id for item in order.items)
        return False

    async def _load_order(self, order_id: int) -> Order:
        order = await self.order_repository.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return order

    @unit_of_work("get_order")
    async def get_order(self, actor: Actor, order_id: int) -> Order:
        order = await self._load_order(order_id)
        if not self._can_view(actor, order):
            raise PermissionDenied(
                "Order is not visible to this user", details={"order_id": order_id}
            )
        return order

    @unit_of_work("list_orders")
    async def list_orders(
        self,
        actor: Actor,
        status_filter: Optional[str] = None,
        customer_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """Customers see their orders, agents their pickup orders, admins all."""
        agent_id = None
        if actor.role == Role.CUSTOMER:
            customer_id = actor.user_id
        elif actor.role == Role.AGENT:
            agent_id = actor.user_id
        elif not actor.is_privileged:
            raise PermissionDenied(
                "Vendors list their order lines instead",
                details={"role": actor.role.value},
            )

        orders, total = await self.order_repository.list_orders(
            customer_id=customer_id,
            agent_id=agent_id,
            status_filter=status_filter,
            skip=skip,
            limit=limit,
        )
        return {"orders": orders, "total": total, "skip": skip, "limit": limit}

    @unit_of_work("list_vendor_items")
    async def list_vendor_items(
        self,
        actor: Actor,
        vendor_id: Optional[int] = None,
        status_filter: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        if actor.role == Role.VENDOR:
            vendor_id = actor.user_id
        elif not actor.is_privileged or vendor_id is None:
            raise PermissionDenied(
                "Only vendors and admins list vendor order lines",
                details={"role": actor.role.value},
            )

        items, total = await self.order_repository.list_vendor_items(
            vendor_id, status_filter=status_filter, skip=skip, limit=limit
        )
        return {"items": items, "total": total, "skip": skip, "limit": limit}

    # ------------------------------------------------------------------
    # Item fulfillment
    # ------------------------------------------------------------------

    @unit_of_work("advance_item_status")
    async def advance_item_status(
        self,
        actor: Actor,
        order_item_id: int,
        new_status: str,
        expected_status: Optional[str] = None,
    ) -> OrderItem:
        """
        Move one order line a single edge forward and recompute the order.

        ``expected_status`` is the status the caller observed; if the line
        has moved on since, the call is rejected as stale.
        """
        item = await self.order_repository.get_item_by_id(order_item_id)
        if not item:
            raise NotFoundError(
                "Order item not found", details={"order_item_id": order_item_id}
            )
        order = await self.order_repository.get_order_by_id(item.order_id)

        if order.status == FulfillmentStatus.CANCELLED.value:
            raise PreconditionFailed(
                "Order has been cancelled",
                reason="order_cancelled",
                details={"order_id": order.id, "current_status": item.status},
            )

        current = item.status
        if expected_status is not None and expected_status != current:
            raise ConflictError(
                "Item status changed since it was read",
                details={"expected_status": expected_status, "current_status": current},
            )

        ensure_item_transition(current, new_status)
        ensure_item_actor(actor, item.vendor_id, order.agent_id, current, new_status)

        now = utcnow()
        values: Dict[str, Any] = {"status": new_status}
        if new_status == FulfillmentStatus.DELIVERED.value:
            values["delivered_at"] = now
        elif new_status == FulfillmentStatus.CANCELLED.value:
            values["cancelled_at"] = now

        if not await self.order_repository.compare_and_set_item(item, current, values):
            raise ConflictError(
                "Item was updated concurrently",
                details={"order_item_id": item.id, "expected_status": current},
            )

        self.stage_event(
            ORDER_ITEM_STATUS_CHANGED,
            OrderItemStatusChangedEventData(
                order_id=order.id,
                order_item_id=item.id,
                vendor_id=item.vendor_id,
                old_status=current,
                new_status=new_status,
                changed_by=actor.user_id,
                changed_at=now,
            ),
            correlation_id=order.id,
        )

        if FulfillmentStatus(new_status) in CUSTOMER_VISIBLE_MILESTONES:
            await self.notifications.dispatch(
                recipient_id=order.customer_id,
                notification_type=NotificationType.ORDER,
                entity_type="order_item",
                entity_id=item.id,
                target_state=new_status,
                title=f"Order {order.order_number} update",
                message=f"{item.product_name} is now {_status_label(new_status)}.",
            )

        await self._recompute_order_status(order)

        logger.info(
            "Order item status updated.",
            extra={
                "order_item_id": item.id,
                "order_id": order.id,
                "old_status": current,
                "new_status": new_status,
                "actor_id": actor.user_id,
                "actor_role": actor.role.value,
            },
        )
        return item

    async def _recompute_order_status(self, order: Order) -> None:
        derived = derive_order_status(item.status for item in order.items)
        if derived is None or derived == order.status:
            return

        previous = order.status
        now = utcnow()
        values: Dict[str, Any] = {"status": derived}
        if derived == FulfillmentStatus.DELIVERED.value:
            values.update(delivered_at=now, pickup_code=None)
        elif derived == FulfillmentStatus.CANCELLED.value:
            values.update(cancelled_at=now, pickup_code=None)

        if not await self.order_repository.compare_and_set_order(order, previous, values):
            raise ConflictError(
                "Order was updated concurrently",
                details={"order_id": order.id, "expected_status": previous},
            )

        if (
            FulfillmentStatus(derived) in PICKUP_CODE_STATES
            and order.pickup_code is None
            and order.pickup_code_issued_at is None
        ):
            await self._issue_pickup_code(order)

        self.stage_event(
            ORDER_STATUS_CHANGED,
            OrderStatusChangedEventData(
                order_id=order.id,
                order_number=order.order_number,
                customer_id=order.customer_id,
                old_status=previous,
                new_status=derived,
                changed_at=now,
            ),
            correlation_id=order.id,
        )

    # ------------------------------------------------------------------
    # Pickup codes
    # ------------------------------------------------------------------

    async def _issue_pickup_code(self, order: Order) -> str:
        code = await self.order_repository.assign_pickup_code(
            order,
            self.code_generator,
            self.settings.PICKUP_CODE_MAX_ATTEMPTS,
        )
        if code is None:
            raise ConflictError(
                "Could not generate a unique pickup code",
                reason="pickup_code_exhausted",
                details={
                    "order_id": order.id,
                    "attempts": self.settings.PICKUP_CODE_MAX_ATTEMPTS,
                },
            )
        logger.info("Pickup code issued.", extra={"order_id": order.id})
        return code

    @unit_of_work("issue_pickup_code")
    async def issue_pickup_code(self, actor: Actor, order_id: int) -> str:
        """Issue (or return the already active) pickup code of an order."""
        if not actor.is_privileged:
            raise PermissionDenied(
                "Only admins issue pickup codes", details={"role": actor.role.value}
            )
        order = await self._load_order(order_id)
        if FulfillmentStatus(order.status) not in PICKUP_CODE_STATES:
            raise PreconditionFailed(
                "Pickup codes exist only for orders in fulfillment",
                details={"order_id": order.id, "current_status": order.status},
            )
        if order.pickup_code:
            return order.pickup_code
        if order.handover_confirmed_at is not None:
            raise PreconditionFailed(
                "Pickup code has already been used",
                reason="code_already_consumed",
                details={"order_id": order.id},
            )
        return await self._issue_pickup_code(order)

    @unit_of_work("verify_and_consume_code")
    async def verify_and_consume_code(
        self, actor: Actor, order_id: int, code: str
    ) -> Order:
        """
        Confirm physical handover at the pickup agent. The code is single
        use; on success every live line and the order become delivered.
        """
        order = await self._load_order(order_id)
        if not (actor.is_admin or (actor.role == Role.AGENT and order.agent_id == actor.user_id)):
            raise PermissionDenied(
                "Only the order's pickup agent confirms handover",
                details={"order_id": order.id},
            )

        if order.status == FulfillmentStatus.CANCELLED.value:
            raise PreconditionFailed(
                "Order has been cancelled",
                reason="order_cancelled",
                details={"order_id": order.id, "current_status": order.status},
            )
        if order.pickup_code is None:
            if order.handover_confirmed_at is not None:
                raise PreconditionFailed(
                    "Pickup code has already been used",
                    reason="code_already_consumed",
                    details={"order_id": order.id, "current_status": order.status},
                )
            raise PreconditionFailed(
                "Order has no active pickup code",
                reason="no_active_code",
                details={"order_id": order.id, "current_status": order.status},
            )
        if not secrets.compare_digest(order.pickup_code, code):
            raise ValidationError(
                "Pickup code does not match", reason="invalid_code", details={"order_id": order.id}
            )

        live_items = [
            item for item in order.items if item.status != FulfillmentStatus.CANCELLED.value
        ]
        not_ready = {
            item.id: item.status
            for item in live_items
            if item.status != FulfillmentStatus.READY_FOR_PICKUP.value
        }
        if not_ready:
            raise PreconditionFailed(
                "Every item must be ready for pickup before handover",
                reason="items_not_ready",
                details={"order_id": order.id, "item_statuses": not_ready},
            )

        now = utcnow()
        previous_status = order.status
        for item in live_items:
            changed = await self.order_repository.compare_and_set_item(
                item,
                FulfillmentStatus.READY_FOR_PICKUP.value,
                {"status": FulfillmentStatus.DELIVERED.value, "delivered_at": now},
            )
            if not changed:
                raise ConflictError(
                    "Item was updated concurrently",
                    details={"order_item_id": item.id},
                )

        consumed = await self.order_repository.consume_pickup_code(
            order,
            code,
            {
                "status": FulfillmentStatus.DELIVERED.value,
                "delivered_at": now,
                "handover_confirmed_at": now,
            },
        )
        if not consumed:
            raise ConflictError(
                "Pickup code was consumed concurrently",
                details={"order_id": order.id},
            )

        for item in live_items:
            self.stage_event(
                ORDER_ITEM_STATUS_CHANGED,
                OrderItemStatusChangedEventData(
                    order_id=order.id,
                    order_item_id=item.id,
                    vendor_id=item.vendor_id,
                    old_status=FulfillmentStatus.READY_FOR_PICKUP.value,
                    new_status=FulfillmentStatus.DELIVERED.value,
                    changed_by=actor.user_id,
                    changed_at=now,
                ),
                correlation_id=order.id,
            )
            await self.notifications.dispatch(
                recipient_id=order.customer_id,
                notification_type=NotificationType.ORDER,
                entity_type="order_item",
                entity_id=item.id,
                target_state=FulfillmentStatus.DELIVERED.value,
                title=f"Order {order.order_number} update",
                message=f"{item.product_name} has been picked up.",
            )

        self.stage_event(
            ORDER_HANDOVER_CONFIRMED,
            OrderHandoverConfirmedEventData(
                order_id=order.id,
                order_number=order.order_number,
                agent_id=actor.user_id,
                delivered_item_ids=[item.id for item in live_items],
                confirmed_at=now,
            ),
            correlation_id=order.id,
        )
        if previous_status != FulfillmentStatus.DELIVERED.value:
            self.stage_event(
                ORDER_STATUS_CHANGED,
                OrderStatusChangedEventData(
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_id=order.customer_id,
                    old_status=previous_status,
                    new_status=FulfillmentStatus.DELIVERED.value,
                    changed_at=now,
                ),
                correlation_id=order.id,
            )

        logger.info(
            "Pickup handover confirmed.",
            extra={"order_id": order.id, "agent_id": actor.user_id},
        )
        return order

    # ------------------------------------------------------------------
    # Cancellation and payment
    # ------------------------------------------------------------------

    @unit_of_work("cancel_order")
    async def cancel_order(
        self,
        actor: Actor,
        order_id: int,
        expected_status: Optional[str] = None,
    ) -> Order:
        """
        Cancel an order that has not left processing. No money moves here;
        the gateway refund of the payment is handled elsewhere.
        """
        order = await self._load_order(order_id)
        if not (actor.is_admin or (actor.role == Role.CUSTOMER and order.customer_id == actor.user_id)):
            raise PermissionDenied(
                "Only the customer or an admin may cancel this order",
                details={"order_id": order.id},
            )

        current = order.status
        if expected_status is not None and expected_status != current:
            raise ConflictError(
                "Order status changed since it was read",
                details={"expected_status": expected_status, "current_status": current},
            )
        if FulfillmentStatus(current) not in CANCELLABLE_ORDER_STATES:
            raise PreconditionFailed(
                f"Cannot cancel an order that is {current}",
                details={
                    "current_status": current,
                    "requested_status": FulfillmentStatus.CANCELLED.value,
                },
            )

        # A pending order can still hold lines that have already left the vendor
        dispatched = {
            item.id: item.status
            for item in order.items
            if item.status != FulfillmentStatus.CANCELLED.value
            and FulfillmentStatus(item.status) not in CANCELLABLE_ORDER_STATES
        }
        if dispatched:
            raise PreconditionFailed(
                "Some items have already been dispatched",
                reason="items_already_dispatched",
                details={"order_id": order.id, "dispatched_items": dispatched},
            )

        now = utcnow()
        cancelled_items: List[OrderItem] = []
        for item in order.items:
            if item.status == FulfillmentStatus.CANCELLED.value:
                continue
            changed = await self.order_repository.compare_and_set_item(
                item,
                item.status,
                {"status": FulfillmentStatus.CANCELLED.value, "cancelled_at": now},
            )
            if not changed:
                raise ConflictError(
                    "Item was updated concurrently", details={"order_item_id": item.id}
                )
            cancelled_items.append(item)

        changed = await self.order_repository.compare_and_set_order(
            order,
            current,
            {
                "status": FulfillmentStatus.CANCELLED.value,
                "cancelled_at": now,
                "pickup_code": None,
            },
        )
        if not changed:
            raise ConflictError(
                "Order was updated concurrently",
                details={"order_id": order.id, "expected_status": current},
            )

        await self.notifications.dispatch(
            recipient_id=order.customer_id,
            notification_type=NotificationType.ORDER,
            entity_type="order",
            entity_id=order.id,
            target_state=FulfillmentStatus.CANCELLED.value,
            title=f"Order {order.order_number} cancelled",
            message="Your order has been cancelled.",
        )
        for vendor_id in sorted({item.vendor_id for item in cancelled_items}):
            await self.notifications.dispatch(
                recipient_id=vendor_id,
                notification_type=NotificationType.ORDER,
                entity_type="order",
                entity_id=order.id,
                target_state=FulfillmentStatus.CANCELLED.value,
                title=f"Order {order.order_number} cancelled",
                message="An order containing your items has been cancelled.",
            )

        self.stage_event(
            ORDER_CANCELLED,
            OrderCancelledEventData(
                order_id=order.id,
                order_number=order.order_number,
                customer_id=order.customer_id,
                cancelled_by=actor.user_id,
                cancelled_item_ids=[item.id for item in cancelled_items],
                cancelled_at=now,
            ),
            correlation_id=order.id,
        )

        logger.info(
            "Order cancelled.",
            extra={"order_id": order.id, "previous_status": current, "actor_id": actor.user_id},
        )
        return order

    @unit_of_work("record_payment_status")
    async def record_payment_status(
        self, actor: Actor, order_id: int, new_status: str
    ) -> Order:
        """Payment gateway callback; only flips the payment status flag."""
        if not actor.is_privileged:
            raise PermissionDenied(
                "Payment status is set by the payment collaborator",
                details={"role": actor.role.value},
            )
        order = await self._load_order(order_id)
        current = order.payment_status
        ensure_transition(PAYMENT_TRANSITIONS, current, new_status, "payment")

        values: Dict[str, Any] = {"payment_status": new_status}
        if new_status == PaymentStatus.COMPLETED.value:
            values["paid_at"] = utcnow()
        if not await self.order_repository.compare_and_set_payment(order, current, values):
            raise ConflictError(
                "Payment status was updated concurrently",
                details={"order_id": order.id, "expected_payment_status": current},
            )

        logger.info(
            "Payment status recorded.",
            extra={"order_id": order.id, "payment_status": new_status},
        )
        return order
