from decimal import Decimal

from sqlalchemy import Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import FulfillmentServiceBaseModel


class VendorAccount(FulfillmentServiceBaseModel):
    """Vendor settlement profile: current commission rate and bank destination."""

    __tablename__ = "vendor_accounts"

    vendor_id: Mapped[int] = mapped_column(
        Integer, unique=True, nullable=False
    )  # Reference to user service (no FK in microservices)

    # Fraction, 0.10 == 10%
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4), default=Decimal("0.10"), nullable=False
    )

    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Bumped with compare-and-set on every pending payout insertion
    payout_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def bank_details(self) -> dict:
        return {
            "bank_name": self.bank_name,
            "account_name": self.account_name,
            "account_number": self.account_number,
        }
