from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, TEXT, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.exceptions import PreconditionFailed
from .base import FulfillmentServiceBaseModel


class FulfillmentStatus(str, Enum):
    """Shared by orders and order items; items are tracked per vendor line."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    READY_FOR_PICKUP = "ready_for_pickup"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Display-only order status when live lines disagree. Never persisted.
MIXED_STATUS = "mixed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


MONEY = Numeric(12, 2)

# Order columns that may not change once payment has completed
FROZEN_MONEY_FIELDS = (
    "subtotal",
    "discount_amount",
    "tax_amount",
    "shipping_cost",
    "total_amount",
)


class Order(FulfillmentServiceBaseModel):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    customer_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )  # Reference to user service (no FK in microservices)
    agent_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )  # Pickup point agent, also a user service reference

    status: Mapped[str] = mapped_column(
        String(20), default=FulfillmentStatus.PENDING.value, nullable=False
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )

    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0"), nullable=False
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0"), nullable=False
    )
    shipping_cost: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0"), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    coupon_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Unique among active orders; cleared once consumed or the order closes
    pickup_code: Mapped[str | None] = mapped_column(
        String(12), unique=True, nullable=True
    )
    pickup_code_issued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    handover_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(TEXT, nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            FulfillmentStatus.DELIVERED.value,
            FulfillmentStatus.CANCELLED.value,
        )

    @property
    def display_status(self) -> str:
        """``mixed`` while live lines disagree, else the persisted status."""
        live = {
            item.status
            for item in self.items
            if item.status != FulfillmentStatus.CANCELLED.value
        }
        if len(live) > 1:
            return MIXED_STATUS
        return self.status


class OrderItem(FulfillmentServiceBaseModel):
    __tablename__ = "order_items"

    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Reference to product service (no FK in microservices)
    vendor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    # Snapshot taken at creation; NULL means the snapshot is missing
    commission_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 4), nullable=True
    )
    commission_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=FulfillmentStatus.PENDING.value, nullable=False
    )
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity


@event.listens_for(Order, "before_update")
def _guard_frozen_money(mapper, connection, target: Order) -> None:
    """Reject changes to monetary fields once payment has completed."""
    state = inspect(target)
    payment_history = state.attrs.payment_status.history
    previous_payment_status = (
        payment_history.deleted[0] if payment_history.deleted else target.payment_status
    )
    if previous_payment_status not in (
        PaymentStatus.COMPLETED.value,
        PaymentStatus.REFUNDED.value,
    ):
        return

    changed = [
        field
        for field in FROZEN_MONEY_FIELDS
        if state.attrs[field].history.has_changes()
    ]
    if changed:
        raise PreconditionFailed(
            "Order amounts cannot change after payment has completed",
            reason="order_amounts_frozen",
            details={"order_id": target.id, "fields": changed},
        )
