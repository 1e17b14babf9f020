from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.order import OrderItem
from ..models.return_request import (
    ACTIVE_RETURN_STATUSES,
    REFUNDED_RETURN_STATUSES,
    ReturnRequest,
    ReturnStatus,
)
from .base import refresh_columns
from .codes import handover_code_in_use


class ReturnRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> ReturnRequest:
        request = ReturnRequest(**fields)
        self.session.add(request)
        await self.session.flush()
        return await self.get_by_id(request.id)  # type: ignore[return-value]

    async def get_by_id(self, request_id: int) -> Optional[ReturnRequest]:
        """Get a return request with its order item and order loaded"""
        query = (
            select(ReturnRequest)
            .options(selectinload(ReturnRequest.order_item).selectinload(OrderItem.order))
            .where(ReturnRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_active_for_item(self, order_item_id: int) -> Optional[ReturnRequest]:
        query = select(ReturnRequest).where(
            ReturnRequest.order_item_id == order_item_id,
            ReturnRequest.status.in_(ACTIVE_RETURN_STATUSES),
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def refunded_total_for_item(
        self, order_item_id: int, exclude_id: Optional[int] = None
    ) -> Decimal:
        """Sum of approved and completed refunds already granted on an item"""
        query = select(func.coalesce(func.sum(ReturnRequest.requested_amount), 0)).where(
            ReturnRequest.order_item_id == order_item_id,
            ReturnRequest.status.in_(REFUNDED_RETURN_STATUSES),
        )
        if exclude_id is not None:
            query = query.where(ReturnRequest.id != exclude_id)
        result = await self.session.execute(query)
        return Decimal(str(result.scalar() or 0))

    async def compare_and_set_status(
        self, request: ReturnRequest, expected_status: str, values: Dict[str, Any]
    ) -> bool:
        """Apply ``values`` only if the request still has ``expected_status``."""
        stmt = (
            update(ReturnRequest)
            .where(
                ReturnRequest.id == request.id,
                ReturnRequest.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, request)
        return True

    async def assign_dropoff_code(
        self,
        request: ReturnRequest,
        generate: Callable[[], str],
        max_attempts: int,
    ) -> Optional[str]:
        for _ in range(max_attempts):
            code = generate()
            if await handover_code_in_use(self.session, code):
                continue
            stmt = (
                update(ReturnRequest)
                .where(ReturnRequest.id == request.id)
                .values(dropoff_code=code)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(stmt)
            await refresh_columns(self.session, request)
            return code
        return None

    async def consume_dropoff_code(
        self, request: ReturnRequest, code: str, confirmed_at: datetime
    ) -> bool:
        stmt = (
            update(ReturnRequest)
            .where(
                ReturnRequest.id == request.id,
                ReturnRequest.dropoff_code == code,
                ReturnRequest.status == ReturnStatus.APPROVED.value,
            )
            .values(dropoff_code=None, dropoff_confirmed_at=confirmed_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, request)
        return True

    async def list_requests(
        self,
        customer_id: Optional[int] = None,
        vendor_id: Optional[int] = None,
        status_filter: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[ReturnRequest], int]:
        conditions = []
        if customer_id is not None:
            conditions.append(ReturnRequest.customer_id == customer_id)
        if vendor_id is not None:
            conditions.append(ReturnRequest.vendor_id == vendor_id)
        if status_filter:
            conditions.append(ReturnRequest.status == status_filter)

        count_result = await self.session.execute(
            select(func.count(ReturnRequest.id)).where(*conditions)
        )
        total_count = count_result.scalar() or 0

        query = (
            select(ReturnRequest)
            .where(*conditions)
            .order_by(ReturnRequest.requested_at.desc(), ReturnRequest.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total_count

    async def pending_requests(self, vendor_id: Optional[int] = None) -> List[ReturnRequest]:
        """Pending requests, oldest first"""
        query = select(ReturnRequest).where(
            ReturnRequest.status == ReturnStatus.PENDING.value
        )
        if vendor_id is not None:
            query = query.where(ReturnRequest.vendor_id == vendor_id)
        query = query.order_by(ReturnRequest.requested_at.asc(), ReturnRequest.id.asc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def requested_between(
        self,
        start: datetime,
        end: datetime,
        vendor_id: Optional[int] = None,
    ) -> List[ReturnRequest]:
        query = (
            select(ReturnRequest)
            .options(selectinload(ReturnRequest.order_item))
            .where(
                ReturnRequest.requested_at >= start,
                ReturnRequest.requested_at < end,
            )
            .order_by(ReturnRequest.requested_at.asc())
        )
        if vendor_id is not None:
            query = query.where(ReturnRequest.vendor_id == vendor_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())
