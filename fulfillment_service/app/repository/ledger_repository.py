"""
Aggregation queries behind the vendor balance.

The balance is always recomputed from orders, returns and payouts; no
running total is stored anywhere.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.order import FulfillmentStatus, OrderItem
from ..models.return_request import REFUNDED_RETURN_STATUSES, ReturnRequest


class LedgerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _delivered(self, vendor_id: Optional[int]):
        conditions = [OrderItem.status == FulfillmentStatus.DELIVERED.value]
        if vendor_id is not None:
            conditions.append(OrderItem.vendor_id == vendor_id)
        return conditions

    async def delivered_totals(
        self, vendor_id: Optional[int] = None
    ) -> Tuple[Decimal, Decimal]:
        """Gross line totals and frozen commission of delivered items"""
        query = select(
            func.coalesce(func.sum(OrderItem.unit_price * OrderItem.quantity), 0),
            func.coalesce(func.sum(OrderItem.commission_amount), 0),
        ).where(*self._delivered(vendor_id))
        gross, commission = (await self.session.execute(query)).one()
        return Decimal(str(gross)), Decimal(str(commission))

    async def delivered_items_missing_commission(
        self, vendor_id: Optional[int] = None
    ) -> List[int]:
        query = select(OrderItem.id).where(
            *self._delivered(vendor_id),
            OrderItem.commission_amount.is_(None),
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def refunded_total(self, vendor_id: Optional[int] = None) -> Decimal:
        """Approved and completed refunds on the vendor's items"""
        query = select(func.coalesce(func.sum(ReturnRequest.requested_amount), 0)).where(
            ReturnRequest.status.in_(REFUNDED_RETURN_STATUSES)
        )
        if vendor_id is not None:
            query = query.where(ReturnRequest.vendor_id == vendor_id)
        result = await self.session.execute(query)
        return Decimal(str(result.scalar() or 0))
