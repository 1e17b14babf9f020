from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.payout import Payout
from .base import refresh_columns

# Sortable columns exposed to admin listings
PAYOUT_SORT_COLUMNS = {
    "created_at": Payout.created_at,
    "amount": Payout.amount,
    "status": Payout.status,
}


class PayoutRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> Payout:
        payout = Payout(**fields)
        self.session.add(payout)
        await self.session.flush()
        await refresh_columns(self.session, payout)
        return payout

    async def get_by_id(self, payout_id: int) -> Optional[Payout]:
        query = (
            select(Payout)
            .where(Payout.id == payout_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def compare_and_set_status(
        self, payout: Payout, expected_status: str, values: Dict[str, Any]
    ) -> bool:
        """Apply ``values`` only if the payout still has ``expected_status``."""
        stmt = (
            update(Payout)
            .where(Payout.id == payout.id, Payout.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, payout)
        return True

    async def totals_by_status(self, vendor_id: Optional[int] = None) -> Dict[str, Decimal]:
        query = select(Payout.status, func.coalesce(func.sum(Payout.amount), 0)).group_by(
            Payout.status
        )
        if vendor_id is not None:
            query = query.where(Payout.vendor_id == vendor_id)
        result = await self.session.execute(query)
        return {status: Decimal(str(total)) for status, total in result.all()}

    async def list_payouts(
        self,
        vendor_id: Optional[int] = None,
        status_filter: Optional[str] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        sort_by: str = "created_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Payout], int]:
        """List payouts with admin filters and return total count"""
        conditions = []
        if vendor_id is not None:
            conditions.append(Payout.vendor_id == vendor_id)
        if status_filter:
            conditions.append(Payout.status == status_filter)
        if min_amount is not None:
            conditions.append(Payout.amount >= min_amount)
        if max_amount is not None:
            conditions.append(Payout.amount <= max_amount)
        if created_from is not None:
            conditions.append(Payout.created_at >= created_from)
        if created_to is not None:
            conditions.append(Payout.created_at <= created_to)

        count_result = await self.session.execute(
            select(func.count(Payout.id)).where(*conditions)
        )
        total_count = count_result.scalar() or 0

        sort_column = PAYOUT_SORT_COLUMNS.get(sort_by, Payout.created_at)
        ordering = sort_column.desc() if descending else sort_column.asc()
        query = (
            select(Payout)
            .where(*conditions)
            .order_by(ordering, Payout.id.desc() if descending else Payout.id.asc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total_count

    async def created_between(
        self,
        start: datetime,
        end: datetime,
        vendor_id: Optional[int] = None,
    ) -> List[Payout]:
        query = select(Payout).where(Payout.created_at >= start, Payout.created_at < end)
        if vendor_id is not None:
            query = query.where(Payout.vendor_id == vendor_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())
