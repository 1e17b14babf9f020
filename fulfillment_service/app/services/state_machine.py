"""
Transition tables for orders, order items, returns, payouts and payments.

Every allowed edge is listed explicitly; anything absent from a table is a
rejected transition, which keeps "forward only, no skipping" checkable.
"""

from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..core.exceptions import PermissionDenied, PreconditionFailed, ValidationError
from ..models.order import FulfillmentStatus, PaymentStatus
from ..models.payout import PayoutStatus
from ..models.return_request import ReturnStatus
from .results import Actor, Role

S = FulfillmentStatus

ITEM_TRANSITIONS: Dict[S, FrozenSet[S]] = {
    S.PENDING: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SHIPPED, S.READY_FOR_PICKUP, S.CANCELLED}),
    S.SHIPPED: frozenset({S.READY_FOR_PICKUP, S.DELIVERED, S.CANCELLED}),
    S.READY_FOR_PICKUP: frozenset({S.DELIVERED, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Edges the owning vendor may take besides cancelling its own line
VENDOR_EDGES: FrozenSet[Tuple[S, S]] = frozenset(
    {
        (S.PENDING, S.PROCESSING),
        (S.PROCESSING, S.SHIPPED),
        (S.PROCESSING, S.READY_FOR_PICKUP),
    }
)

# Targets the order's pickup agent may move an item to
AGENT_TARGETS: FrozenSet[S] = frozenset({S.READY_FOR_PICKUP, S.DELIVERED})

# Order states from which the whole order may still be cancelled
CANCELLABLE_ORDER_STATES: FrozenSet[S] = frozenset({S.PENDING, S.PROCESSING})

# Order states that carry an active pickup code
PICKUP_CODE_STATES: FrozenSet[S] = frozenset(
    {S.PROCESSING, S.SHIPPED, S.READY_FOR_PICKUP}
)

# Item milestones the customer is told about
CUSTOMER_VISIBLE_MILESTONES: FrozenSet[S] = frozenset(
    {S.SHIPPED, S.READY_FOR_PICKUP, S.DELIVERED, S.CANCELLED}
)

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.COMPLETED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

RETURN_TRANSITIONS: Dict[ReturnStatus, FrozenSet[ReturnStatus]] = {
    ReturnStatus.PENDING: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
    ReturnStatus.APPROVED: frozenset({ReturnStatus.COMPLETED}),
    ReturnStatus.REJECTED: frozenset(),
    ReturnStatus.COMPLETED: frozenset(),
}

PAYOUT_TRANSITIONS: Dict[PayoutStatus, FrozenSet[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset(
        {PayoutStatus.PROCESSING, PayoutStatus.COMPLETED, PayoutStatus.FAILED}
    ),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.FAILED: frozenset(),
}


def allowed_item_targets(current: str) -> List[str]:
    return sorted(target.value for target in ITEM_TRANSITIONS[S(current)])


def ensure_item_transition(current: str, requested: str) -> None:
    """Raise ``PreconditionFailed`` unless ``current -> requested`` is one edge."""
    if requested not in S._value2member_map_:
        raise ValidationError(
            f"Unknown item status {requested}",
            reason="unknown_status",
            details={"requested_status": requested},
        )
    if S(requested) not in ITEM_TRANSITIONS[S(current)]:
        raise PreconditionFailed(
            f"Cannot move item from {current} to {requested}",
            reason="invalid_transition",
            details={
                "current_status": current,
                "requested_status": requested,
                "allowed_statuses": allowed_item_targets(current),
            },
        )


def ensure_item_actor(
    actor: Actor,
    vendor_id: int,
    agent_id: Optional[int],
    current: str,
    requested: str,
) -> None:
    """Raise ``PermissionDenied`` unless ``actor`` may take this item edge."""
    if actor.role == Role.ADMIN:
        return

    edge = (S(current), S(requested))
    if actor.role == Role.VENDOR and actor.user_id == vendor_id:
        if edge in VENDOR_EDGES or edge[1] == S.CANCELLED:
            return
    if actor.role == Role.AGENT and agent_id is not None and actor.user_id == agent_id:
        if edge[1] in AGENT_TARGETS:
            return

    raise PermissionDenied(
        f"{actor.role.value} {actor.user_id} may not move this item to {requested}",
        details={
            "role": actor.role.value,
            "current_status": current,
            "requested_status": requested,
        },
    )


def ensure_transition(table: Dict, current: str, requested: str, entity: str) -> None:
    """Generic edge check for the return, payout and payment tables."""
    status_type = type(next(iter(table)))
    if requested not in status_type._value2member_map_:
        raise ValidationError(
            f"Unknown {entity} status {requested}",
            reason="unknown_status",
            details={"requested_status": requested},
        )
    if status_type(requested) not in table[status_type(current)]:
        raise PreconditionFailed(
            f"Cannot move {entity} from {current} to {requested}",
            reason="invalid_transition",
            details={"current_status": current, "requested_status": requested},
        )


def derive_order_status(item_statuses: Iterable[str]) -> Optional[str]:
    """
    Order status implied by its lines, or None when the lines disagree.

    Cancelled lines are ignored while at least one line is live; an order
    whose lines are all cancelled is cancelled.
    """
    statuses = list(item_statuses)
    if not statuses:
        return None
    live = {status for status in statuses if status != S.CANCELLED.value}
    if not live:
        return S.CANCELLED.value
    if len(live) == 1:
        return live.pop()
    return None

