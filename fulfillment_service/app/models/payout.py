from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, Integer, String, TEXT
from sqlalchemy.orm import Mapped, mapped_column

from .base import FulfillmentServiceBaseModel
from .order import MONEY


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Undecided payouts count as provisional holds against the balance
HELD_PAYOUT_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)


class Payout(FulfillmentServiceBaseModel):
    __tablename__ = "payouts"

    vendor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PayoutStatus.PENDING.value, nullable=False, index=True
    )
    reference_code: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False
    )

    # Bank destination snapshot at request time
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_number: Mapped[str] = mapped_column(String(64), nullable=False)

    admin_note: Mapped[str | None] = mapped_column(TEXT, nullable=True)
    decided_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
