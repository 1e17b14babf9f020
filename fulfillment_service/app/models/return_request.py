from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, TEXT, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import FulfillmentServiceBaseModel, utcnow
from .order import MONEY, OrderItem


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


# Requests that block a new request on the same item
ACTIVE_RETURN_STATUSES = (ReturnStatus.PENDING.value, ReturnStatus.APPROVED.value)

# Requests deducted from the vendor's earnings
REFUNDED_RETURN_STATUSES = (ReturnStatus.APPROVED.value, ReturnStatus.COMPLETED.value)


class ReturnRequest(FulfillmentServiceBaseModel):
    __tablename__ = "return_requests"
    __table_args__ = (
        # At most one active request per order item
        Index(
            "uq_return_requests_active_item",
            "order_item_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'approved')"),
            sqlite_where=text("status IN ('pending', 'approved')"),
        ),
    )

    order_item_id: Mapped[int] = mapped_column(
        ForeignKey("order_items.id"), nullable=False, index=True
    )
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id"), nullable=False, index=True
    )
    customer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    vendor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(TEXT, nullable=True)
    requested_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=ReturnStatus.PENDING.value, nullable=False, index=True
    )
    vendor_response: Mapped[str | None] = mapped_column(TEXT, nullable=True)
    decided_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, nullable=False
    )
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    # Single-use handover token issued on approval
    dropoff_code: Mapped[str | None] = mapped_column(
        String(12), unique=True, nullable=True
    )
    dropoff_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    order_item: Mapped["OrderItem"] = relationship("OrderItem")
