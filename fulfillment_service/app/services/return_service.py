"""
Return/refund adjudication: request, decide, dropoff handover and completion.
"""

import secrets
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    ConflictError,
    InsufficientBalance,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    ValidationError,
)
from ..core.settings import get_settings
from ..events.schemas import (
    RETURN_COMPLETED,
    RETURN_DECIDED,
    RETURN_REQUESTED,
    ReturnCompletedEventData,
    ReturnDecidedEventData,
    ReturnRequestedEventData,
)
from ..models.base import utcnow
from ..models.notification import NotificationType
from ..models.order import FulfillmentStatus
from ..models.return_request import ReturnRequest, ReturnStatus
from ..repository.order_repository import OrderRepository
from ..repository.return_repository import ReturnRequestRepository
from ..repository.vendor_repository import VendorAccountRepository
from ..utils.codes import generate_numeric_code
from ..utils.logging import setup_fulfillment_logging as setup_logging
from ..utils.money import ZERO, to_money
from .notification_service import NotificationDispatcher
from .results import Actor, Role, TransactionalService, unit_of_work
from .settlement_service import compute_vendor_balance
from .state_machine import RETURN_TRANSITIONS, ensure_transition

logger = setup_logging("fulfillment_service.returns", log_level="INFO")


class ReturnDecision:
    APPROVE = "approve"
    REJECT = "reject"


class ReturnService(TransactionalService):
    def __init__(
        self,
        session: AsyncSession,
        event_producer: Optional[Any] = None,
        code_generator: Optional[Callable[[], str]] = None,
    ):
        super().__init__(session, event_producer)
        self.settings = get_settings()
        self.order_repository = OrderRepository(session)
        self.return_repository = ReturnRequestRepository(session)
        self.vendor_repository = VendorAccountRepository(session)
        self.notifications = NotificationDispatcher(session)
        self.code_generator = code_generator or (
            lambda: generate_numeric_code(self.settings.PICKUP_CODE_LENGTH)
        )

    async def _load_request(self, request_id: int) -> ReturnRequest:
        request = await self.return_repository.get_by_id(request_id)
        if not request:
            raise NotFoundError(
                "Return request not found", details={"return_id": request_id}
            )
        return request

    async def _max_refundable(self, item_line_total: Decimal, item_id: int, exclude_id: Optional[int] = None) -> Dict[str, Decimal]:
        already_refunded = await self.return_repository.refunded_total_for_item(
            item_id, exclude_id=exclude_id
        )
        line_total = to_money(item_line_total)
        return {
            "line_total": line_total,
            "already_refunded": to_money(already_refunded),
            "max_refundable": to_money(line_total - already_refunded),
        }

    async def _ensure_refund_covered(self, vendor_id: int, amount: Decimal) -> None:
        """
        An approved refund is debited from the vendor's balance at once, so it
        must fit next to pending payouts. Bumps the payout sequence so a payout
        request racing this approval loses.
        """
        account = await self.vendor_repository.get_or_create(
            vendor_id, self.settings.DEFAULT_COMMISSION_RATE
        )
        observed_sequence = account.payout_sequence
        balance = await compute_vendor_balance(self.session, vendor_id)
        if balance.available_balance - amount < ZERO:
            raise InsufficientBalance(
                "Refund exceeds the vendor's available balance",
                details={
                    "vendor_id": vendor_id,
                    "requested_amount": str(amount),
                    "available_balance": str(balance.available_balance),
                    "held": str(balance.held),
                },
            )

        if not await self.vendor_repository.advance_payout_sequence(vendor_id, observed_sequence):
            raise ConflictError(
                "A payout for this vendor was requested concurrently",
                details={"vendor_id": vendor_id},
            )

    @unit_of_work("request_return")
    async def request_return(
        self,
        actor: Actor,
        order_item_id: int,
        reason: str,
        requested_amount: Decimal,
        description: Optional[str] = None,
    ) -> ReturnRequest:
        """
        Customer claim against a delivered line. At most one active request
        may exist per line; a second one is rejected as a duplicate.
        """
        item = await self.order_repository.get_item_by_id(order_item_id)
        if not item:
            raise NotFoundError(
                "Order item not found", details={"order_item_id": order_item_id}
            )
        order = await self.order_repository.get_order_by_id(item.order_id)
        if actor.role != Role.CUSTOMER or order.customer_id != actor.user_id:
            raise PermissionDenied(
                "Only the ordering customer may request a return",
                details={"order_item_id": order_item_id},
            )

        if item.status != FulfillmentStatus.DELIVERED.value:
            raise PreconditionFailed(
                "Only delivered items can be returned",
                reason="item_not_delivered",
                details={"order_item_id": item.id, "current_status": item.status},
            )

        now = utcnow()
        window = timedelta(hours=self.settings.RETURN_WINDOW_HOURS)
        if item.delivered_at is not None and now - item.delivered_at > window:
            raise PreconditionFailed(
                "The return window for this item has closed",
                reason="return_window_expired",
                details={
                    "order_item_id": item.id,
                    "delivered_at": item.delivered_at.isoformat(),
                    "window_hours": self.settings.RETURN_WINDOW_HOURS,
                },
            )

        active = await self.return_repository.get_active_for_item(item.id)
        if active:
            raise PreconditionFailed(
                "An active return request already exists for this item",
                reason="duplicate_request",
                details={
                    "order_item_id": item.id,
                    "existing_return_id": active.id,
                    "current_status": active.status,
                },
            )

        if not reason or not reason.strip():
            raise ValidationError("A return reason is required", reason="reason_required")

        amount = to_money(requested_amount)
        limits = await self._max_refundable(item.line_total, item.id)
        if amount <= ZERO:
            raise ValidationError(
                "Refund amount must be greater than 0",
                reason="invalid_amount",
                details={"requested_amount": str(amount)},
            )
        if amount > limits["max_refundable"]:
            raise ValidationError(
                "Refund amount exceeds the item line total",
                reason="amount_exceeds_line_total",
                details={
                    "requested_amount": str(amount),
                    **{key: str(value) for key, value in limits.items()},
                },
            )

        try:
            request = await self.return_repository.create(
                order_item_id=item.id,
                order_id=order.id,
                customer_id=order.customer_id,
                vendor_id=item.vendor_id,
                reason=reason.strip(),
                description=description,
                requested_amount=amount,
                status=ReturnStatus.PENDING.value,
                requested_at=now,
            )
        except IntegrityError:
            # Lost a race against a concurrent request for the same line
            raise PreconditionFailed(
                "An active return request already exists for this item",
                reason="duplicate_request",
                details={"order_item_id": item.id},
            )

        await self.notifications.dispatch(
            recipient_id=item.vendor_id,
            notification_type=NotificationType.RETURN,
            entity_type="return",
            entity_id=request.id,
            target_state=ReturnStatus.PENDING.value,
            title="New return request",
            message=(
                f"A customer requested a refund of {amount} for "
                f"{item.product_name} (order {order.order_number})."
            ),
        )
        self.stage_event(
            RETURN_REQUESTED,
            ReturnRequestedEventData(
                return_id=request.id,
                order_id=order.id,
                order_item_id=item.id,
                customer_id=order.customer_id,
                vendor_id=item.vendor_id,
                reason=request.reason,
                requested_amount=amount,
                requested_at=now,
            ),
            correlation_id=order.id,
        )

        logger.info(
            "Return requested.",
            extra={
                "return_id": request.id,
                "order_item_id": item.id,
                "requested_amount": str(amount),
            },
        )
        return request

    @unit_of_work("decide_return")
    async def decide(
        self,
        actor: Actor,
        request_id: int,
        decision: str,
        vendor_response: Optional[str] = None,
    ) -> ReturnRequest:
        """
        Approve or reject a pending request. A second decision is rejected
        with ``already_decided`` rather than silently ignored.
        """
        request = await self._load_request(request_id)
        if not (actor.is_admin or (actor.role == Role.VENDOR and request.vendor_id == actor.user_id)):
            raise PermissionDenied(
                "Only the item's vendor or an admin may decide this return",
                details={"return_id": request.id},
            )

        if decision not in (ReturnDecision.APPROVE, ReturnDecision.REJECT):
            raise ValidationError(
                "Decision must be approve or reject",
                reason="invalid_decision",
                details={"decision": decision},
            )

        if request.status != ReturnStatus.PENDING.value:
            raise PreconditionFailed(
                "This return request has already been decided",
                reason="already_decided",
                details={"return_id": request.id, "current_status": request.status},
            )

        target = (
            ReturnStatus.APPROVED.value
            if decision == ReturnDecision.APPROVE
            else ReturnStatus.REJECTED.value
        )
        ensure_transition(RETURN_TRANSITIONS, request.status, target, "return")

        if decision == ReturnDecision.REJECT and not (vendor_response and vendor_response.strip()):
            raise ValidationError(
                "A rejection must state a reason",
                reason="response_required",
                details={"return_id": request.id},
            )

        if decision == ReturnDecision.APPROVE:
            limits = await self._max_refundable(
                request.order_item.line_total, request.order_item_id, exclude_id=request.id
            )
            if to_money(request.requested_amount) > limits["max_refundable"]:
                raise ValidationError(
                    "Refund amount exceeds the item line total",
                    reason="amount_exceeds_line_total",
                    details={
                        "requested_amount": str(request.requested_amount),
                        **{key: str(value) for key, value in limits.items()},
                    },
                )
            await self._ensure_refund_covered(
                request.vendor_id, to_money(request.requested_amount)
            )

        now = utcnow()
        changed = await self.return_repository.compare_and_set_status(
            request,
            ReturnStatus.PENDING.value,
            {
                "status": target,
                "vendor_response": vendor_response,
                "decided_by": actor.user_id,
                "decided_at": now,
            },
        )
        if not changed:
            raise PreconditionFailed(
                "This return request has already been decided",
                reason="already_decided",
                details={"return_id": request.id},
            )

        if target == ReturnStatus.APPROVED.value:
            code = await self.return_repository.assign_dropoff_code(
                request, self.code_generator, self.settings.PICKUP_CODE_MAX_ATTEMPTS
            )
            if code is None:
                raise ConflictError(
                    "Could not generate a unique dropoff code",
                    reason="pickup_code_exhausted",
                    details={"return_id": request.id},
                )

        approved = target == ReturnStatus.APPROVED.value
        await self.notifications.dispatch(
            recipient_id=request.customer_id,
            notification_type=NotificationType.RETURN,
            entity_type="return",
            entity_id=request.id,
            target_state=target,
            title="Return approved" if approved else "Return rejected",
            message=(
                f"Your refund request of {request.requested_amount} was approved."
                if approved
                else f"Your refund request was rejected: {vendor_response}"
            ),
        )
        self.stage_event(
            RETURN_DECIDED,
            ReturnDecidedEventData(
                return_id=request.id,
                order_item_id=request.order_item_id,
                customer_id=request.customer_id,
                vendor_id=request.vendor_id,
                decision=target,
                decided_by=actor.user_id,
                vendor_response=vendor_response,
                decided_at=now,
            ),
            correlation_id=request.order_id,
        )

        logger.info(
            "Return decided.",
            extra={"return_id": request.id, "decision": target, "actor_id": actor.user_id},
        )
        return request

    @unit_of_work("confirm_return_dropoff")
    async def confirm_return_dropoff(
        self, actor: Actor, request_id: int, code: str
    ) -> ReturnRequest:
        """Agent confirms the customer handed the item back at the pickup point."""
        request = await self._load_request(request_id)
        order = request.order_item.order
        if not (actor.is_admin or (actor.role == Role.AGENT and order.agent_id == actor.user_id)):
            raise PermissionDenied(
                "Only the order's pickup agent confirms a return dropoff",
                details={"return_id": request.id},
            )

        if request.status != ReturnStatus.APPROVED.value:
            raise PreconditionFailed(
                "Only approved returns can be dropped off",
                details={"return_id": request.id, "current_status": request.status},
            )
        if request.dropoff_code is None:
            raise PreconditionFailed(
                "Dropoff code has already been used",
                reason="code_already_consumed",
                details={"return_id": request.id},
            )
        if not secrets.compare_digest(request.dropoff_code, code):
            raise ValidationError(
                "Dropoff code does not match",
                reason="invalid_code",
                details={"return_id": request.id},
            )

        if not await self.return_repository.consume_dropoff_code(request, code, utcnow()):
            raise ConflictError(
                "Dropoff code was consumed concurrently",
                details={"return_id": request.id},
            )

        await self.notifications.dispatch(
            recipient_id=request.vendor_id,
            notification_type=NotificationType.RETURN,
            entity_type="return",
            entity_id=request.id,
            target_state="dropoff_confirmed",
            title="Returned item dropped off",
            message="The returned item is at the pickup point awaiting collection.",
        )
        logger.info("Return dropoff confirmed.", extra={"return_id": request.id})
        return request

    @unit_of_work("complete_return")
    async def complete(self, actor: Actor, request_id: int) -> ReturnRequest:
        """
        Mark the refund as paid back to the customer. Triggered by the
        payment gateway callback; a second call is rejected.
        """
        if not actor.is_privileged:
            raise PermissionDenied(
                "Refund completion is recorded by the payment collaborator",
                details={"role": actor.role.value},
            )
        request = await self._load_request(request_id)

        if request.status == ReturnStatus.COMPLETED.value:
            raise PreconditionFailed(
                "This refund has already been completed",
                reason="already_completed",
                details={"return_id": request.id, "current_status": request.status},
            )
        ensure_transition(
            RETURN_TRANSITIONS, request.status, ReturnStatus.COMPLETED.value, "return"
        )

        now = utcnow()
        changed = await self.return_repository.compare_and_set_status(
            request,
            ReturnStatus.APPROVED.value,
            {"status": ReturnStatus.COMPLETED.value, "completed_at": now, "dropoff_code": None},
        )
        if not changed:
            raise ConflictError(
                "Return was updated concurrently",
                details={"return_id": request.id, "expected_status": ReturnStatus.APPROVED.value},
            )

        await self.notifications.dispatch(
            recipient_id=request.customer_id,
            notification_type=NotificationType.RETURN,
            entity_type="return",
            entity_id=request.id,
            target_state=ReturnStatus.COMPLETED.value,
            title="Refund completed",
            message=f"Your refund of {request.requested_amount} has been paid.",
        )
        self.stage_event(
            RETURN_COMPLETED,
            ReturnCompletedEventData(
                return_id=request.id,
                order_item_id=request.order_item_id,
                customer_id=request.customer_id,
                vendor_id=request.vendor_id,
                refunded_amount=to_money(request.requested_amount),
                completed_at=now,
            ),
            correlation_id=request.order_id,
        )
        logger.info("Return completed.", extra={"return_id": request.id})
        return request

    @unit_of_work("get_return")
    async def get_return(self, actor: Actor, request_id: int) -> ReturnRequest:
        request = await self._load_request(request_id)
        visible = (
            actor.is_privileged
            or (actor.role == Role.CUSTOMER and request.customer_id == actor.user_id)
            or (actor.role == Role.VENDOR and request.vendor_id == actor.user_id)
            or (actor.role == Role.AGENT and request.order_item.order.agent_id == actor.user_id)
        )
        if not visible:
            raise PermissionDenied(
                "Return request is not visible to this user",
                details={"return_id": request.id},
            )
        return request

    @unit_of_work("list_returns")
    async def list_returns(
        self,
        actor: Actor,
        status_filter: Optional[str] = None,
        vendor_id: Optional[int] = None,
        customer_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        if actor.role == Role.CUSTOMER:
            customer_id, vendor_id = actor.user_id, None
        elif actor.role == Role.VENDOR:
            customer_id, vendor_id = None, actor.user_id
        elif not actor.is_privileged:
            raise PermissionDenied(
                "Return requests are not visible to this user",
                details={"role": actor.role.value},
            )

        requests, total = await self.return_repository.list_requests(
            customer_id=customer_id,
            vendor_id=vendor_id,
            status_filter=status_filter,
            skip=skip,
            limit=limit,
        )
        return {"returns": requests, "total": total, "skip": skip, "limit": limit}

    @unit_of_work("pending_return_ages")
    async def pending_return_ages(
        self, actor: Actor, vendor_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Pending requests with their age in hours, oldest first."""
        if actor.role == Role.VENDOR:
            vendor_id = actor.user_id
        elif not actor.is_privileged:
            raise PermissionDenied(
                "Pending return ages are a reporting view",
                details={"role": actor.role.value},
            )

        now = utcnow()
        return [
            {
                "return_id": request.id,
                "order_item_id": request.order_item_id,
                "vendor_id": request.vendor_id,
                "requested_amount": to_money(request.requested_amount),
                "requested_at": request.requested_at,
                "age_hours": round((now - request.requested_at).total_seconds() / 3600, 2),
            }
            for request in await self.return_repository.pending_requests(vendor_id)
        ]
