from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Integer, String, TEXT
from sqlalchemy.orm import Mapped, mapped_column

from .base import FulfillmentServiceBaseModel


class NotificationType(str, Enum):
    ORDER = "order"
    RETURN = "return"
    PAYOUT = "payout"


class Notification(FulfillmentServiceBaseModel):
    __tablename__ = "notifications"

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(TEXT, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)

    related_entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    related_entity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    # "<entity_type>:<entity_id>:<target_state>:<recipient>"
    dedupe_key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
