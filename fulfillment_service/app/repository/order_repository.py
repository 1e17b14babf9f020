from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.base import utcnow
from ..models.order import FulfillmentStatus, Order, OrderItem
from .base import refresh_columns
from .codes import handover_code_in_use


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(
        self,
        customer_id: int,
        order_number: str,
        items: List[Dict[str, Any]],
        subtotal: Decimal,
        discount_amount: Decimal,
        tax_amount: Decimal,
        shipping_cost: Decimal,
        total_amount: Decimal,
        agent_id: Optional[int] = None,
        currency: str = "USD",
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Create a new order with its items"""
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            agent_id=agent_id,
            status=FulfillmentStatus.PENDING.value,
            subtotal=subtotal,
            discount_amount=discount_amount,
            tax_amount=tax_amount,
            shipping_cost=shipping_cost,
            total_amount=total_amount,
            currency=currency,
            coupon_code=coupon_code,
            notes=notes,
        )
        order.items = [
            OrderItem(
                product_id=item["product_id"],
                vendor_id=item["vendor_id"],
                product_name=item["product_name"],
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                commission_rate=item.get("commission_rate"),
                commission_amount=item.get("commission_amount"),
                status=FulfillmentStatus.PENDING.value,
            )
            for item in items
        ]

        self.session.add(order)
        await self.session.flush()
        return await self.get_order_by_id(order.id)  # type: ignore[return-value]

    async def get_order_by_id(self, order_id: int) -> Optional[Order]:
        """Get order by ID with items"""
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_order_by_number(self, order_number: str) -> Optional[Order]:
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.order_number == order_number)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_item_by_id(self, item_id: int) -> Optional[OrderItem]:
        """Get an order item; its order is loaded separately with get_order_by_id"""
        query = (
            select(OrderItem)
            .where(OrderItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def list_orders(
        self,
        customer_id: Optional[int] = None,
        agent_id: Optional[int] = None,
        status_filter: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Order], int]:
        """List orders with optional filters and return total count"""
        conditions = []
        if customer_id is not None:
            conditions.append(Order.customer_id == customer_id)
        if agent_id is not None:
            conditions.append(Order.agent_id == agent_id)
        if status_filter:
            conditions.append(Order.status == status_filter)

        count_result = await self.session.execute(
            select(func.count(Order.id)).where(*conditions)
        )
        total_count = count_result.scalar() or 0

        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total_count

    async def list_vendor_items(
        self,
        vendor_id: int,
        status_filter: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[OrderItem], int]:
        """List a vendor's order lines, newest first"""
        conditions = [OrderItem.vendor_id == vendor_id]
        if status_filter:
            conditions.append(OrderItem.status == status_filter)

        count_result = await self.session.execute(
            select(func.count(OrderItem.id)).where(*conditions)
        )
        total_count = count_result.scalar() or 0

        query = (
            select(OrderItem)
            .where(*conditions)
            .order_by(OrderItem.created_at.desc(), OrderItem.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total_count

    async def compare_and_set_item(
        self, item: OrderItem, expected_status: str, values: Dict[str, Any]
    ) -> bool:
        """
        Apply ``values`` only if the item still has ``expected_status``.
        Returns False when another transaction changed it first.
        """
        stmt = (
            update(OrderItem)
            .where(OrderItem.id == item.id, OrderItem.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, item)
        return True

    async def compare_and_set_order(
        self, order: Order, expected_status: str, values: Dict[str, Any]
    ) -> bool:
        """Apply ``values`` only if the order still has ``expected_status``."""
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, order)
        return True

    async def compare_and_set_payment(
        self, order: Order, expected_payment_status: str, values: Dict[str, Any]
    ) -> bool:
        """Apply ``values`` only if the payment status is still ``expected_payment_status``."""
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.payment_status == expected_payment_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, order)
        return True

    async def assign_pickup_code(
        self,
        order: Order,
        generate: Callable[[], str],
        max_attempts: int,
    ) -> Optional[str]:
        """
        Give the order a code no other active order or return holds.
        Returns None when every attempt collided.
        """
        for _ in range(max_attempts):
            code = generate()
            if await handover_code_in_use(self.session, code):
                continue
            stmt = (
                update(Order)
                .where(Order.id == order.id, Order.pickup_code.is_(None))
                .values(pickup_code=code, pickup_code_issued_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            await refresh_columns(self.session, order)
            if result.rowcount != 1:
                # Already issued by an earlier transition
                return order.pickup_code
            return code
        return None

    async def consume_pickup_code(
        self, order: Order, code: str, values: Dict[str, Any]
    ) -> bool:
        """Invalidate ``code`` for the order; False if it was already consumed."""
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.pickup_code == code)
            .values(pickup_code=None, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await refresh_columns(self.session, order)
        return True

    async def items_missing_commission(self, vendor_id: int) -> List[OrderItem]:
        query = select(OrderItem).where(
            OrderItem.vendor_id == vendor_id,
            OrderItem.commission_amount.is_(None),
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def set_commission_snapshot(
        self, item_id: int, commission_rate: Decimal, commission_amount: Decimal
    ) -> bool:
        """Fill a missing commission snapshot; never overwrites an existing one."""
        stmt = (
            update(OrderItem)
            .where(OrderItem.id == item_id, OrderItem.commission_amount.is_(None))
            .values(commission_rate=commission_rate, commission_amount=commission_amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delivered_items_between(
        self,
        start: datetime,
        end: datetime,
        vendor_id: Optional[int] = None,
    ) -> List[OrderItem]:
        query = select(OrderItem).where(
            OrderItem.status == FulfillmentStatus.DELIVERED.value,
            OrderItem.delivered_at >= start,
            OrderItem.delivered_at < end,
        )
        if vendor_id is not None:
            query = query.where(OrderItem.vendor_id == vendor_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def item_counts_by_vendor(
        self, start: datetime, end: datetime
    ) -> Dict[int, int]:
        """Order lines created per vendor in the window."""
        query = (
            select(OrderItem.vendor_id, func.count(OrderItem.id))
            .where(OrderItem.created_at >= start, OrderItem.created_at < end)
            .group_by(OrderItem.vendor_id)
        )
        result = await self.session.execute(query)
        return {vendor_id: count for vendor_id, count in result.all()}
