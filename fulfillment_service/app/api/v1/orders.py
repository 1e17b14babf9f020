from typing import Optional

from fastapi import APIRouter, Query, status

from ...models.order import FulfillmentStatus, Order
from ...schemas.order import (
    AdvanceItemStatusRequest,
    CancelOrderRequest,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
    PaymentStatusRequest,
    PickupCodeResponse,
    PlaceOrderRequest,
    VendorItemListResponse,
    VerifyPickupCodeRequest,
)
from ...services.order_service import OrderService
from ...services.results import Actor, Role
from ...utils.logging import setup_fulfillment_logging
from ..deps import ActorDep, CorrelationIdDep, OrderServiceDep

logger = setup_fulfillment_logging("orders_api")

router = APIRouter(prefix="/orders")


def order_response(order: Order, actor: Actor) -> OrderResponse:
    """The pickup code is shown only to the ordering customer and admins."""
    response = OrderResponse.model_validate(order)
    owner = actor.role == Role.CUSTOMER and actor.user_id == order.customer_id
    if not (owner or actor.is_privileged):
        response.pickup_code = None
    return response


@router.post("/", status_code=status.HTTP_201_CREATED)
async def place_order(
    order_data: PlaceOrderRequest,
    actor: Actor = ActorDep,
    correlation_id: Optional[str] = CorrelationIdDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    """Create an order at checkout completion"""
    result = await order_service.place_order(
        actor,
        items=[item.model_dump() for item in order_data.items],
        total_amount=order_data.total_amount,
        discount_amount=order_data.discount_amount,
        tax_amount=order_data.tax_amount,
        shipping_cost=order_data.shipping_cost,
        customer_id=order_data.customer_id,
        agent_id=order_data.agent_id,
        currency=order_data.currency,
        coupon_code=order_data.coupon_code,
        notes=order_data.notes,
    )
    order = result.unwrap()
    logger.info(
        "Order placed via API",
        extra={"order_id": order.id, "correlation_id": correlation_id},
    )
    return order_response(order, actor)


@router.get("/", status_code=status.HTTP_200_OK)
async def list_orders(
    status_filter: Optional[FulfillmentStatus] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None, description="Admin filter"),
    skip: int = Query(0, ge=0, description="Number of orders to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of orders to return"),
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderListResponse:
    """List orders visible to the caller with pagination"""
    result = await order_service.list_orders(
        actor,
        status_filter=status_filter.value if status_filter else None,
        customer_id=customer_id,
        skip=skip,
        limit=limit,
    )
    return OrderListResponse.model_validate(result.unwrap(), from_attributes=True)


@router.get("/vendor-items", status_code=status.HTTP_200_OK)
async def list_vendor_items(
    vendor_id: Optional[int] = Query(None, description="Admin filter"),
    status_filter: Optional[FulfillmentStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> VendorItemListResponse:
    """List a vendor's order lines"""
    result = await order_service.list_vendor_items(
        actor,
        vendor_id=vendor_id,
        status_filter=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )
    return VendorItemListResponse.model_validate(result.unwrap(), from_attributes=True)


@router.post("/items/{order_item_id}/status", status_code=status.HTTP_200_OK)
async def advance_item_status(
    order_item_id: int,
    payload: AdvanceItemStatusRequest,
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderItemResponse:
    """Move one order line a single edge forward"""
    result = await order_service.advance_item_status(
        actor,
        order_item_id,
        payload.new_status.value,
        expected_status=payload.expected_status.value if payload.expected_status else None,
    )
    return OrderItemResponse.model_validate(result.unwrap())


@router.get("/{order_id}", status_code=status.HTTP_200_OK)
async def get_order(
    order_id: int,
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    """Get order details by ID"""
    order = (await order_service.get_order(actor, order_id)).unwrap()
    return order_response(order, actor)


@router.post("/{order_id}/cancel", status_code=status.HTTP_200_OK)
async def cancel_order(
    order_id: int,
    payload: Optional[CancelOrderRequest] = None,
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    expected = payload.expected_status.value if payload and payload.expected_status else None
    result = await order_service.cancel_order(actor, order_id, expected_status=expected)
    return order_response(result.unwrap(), actor)


@router.post("/{order_id}/pickup-code", status_code=status.HTTP_200_OK)
async def issue_pickup_code(
    order_id: int,
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> PickupCodeResponse:
    """Issue, or return the active, pickup code of an order"""
    code = (await order_service.issue_pickup_code(actor, order_id)).unwrap()
    return PickupCodeResponse(order_id=order_id, pickup_code=code)


@router.post("/{order_id}/handover", status_code=status.HTTP_200_OK)
async def confirm_handover(
    order_id: int,
    payload: VerifyPickupCodeRequest,
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    """Agent confirms pickup by verifying and consuming the pickup code"""
    result = await order_service.verify_and_consume_code(actor, order_id, payload.code)
    return order_response(result.unwrap(), actor)


@router.post("/{order_id}/payment-status", status_code=status.HTTP_200_OK)
async def record_payment_status(
    order_id: int,
    payload: PaymentStatusRequest,
    actor: Actor = ActorDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    """Payment gateway callback"""
    result = await order_service.record_payment_status(
        actor, order_id, payload.payment_status.value
    )
    return order_response(result.unwrap(), actor)
