from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.order import Order
from ..models.return_request import ReturnRequest


async def handover_code_in_use(session: AsyncSession, code: str) -> bool:
    """Pickup and dropoff codes share one space so an agent lookup is unambiguous."""
    query = select(
        or_(
            exists().where(Order.pickup_code == code),
            exists().where(ReturnRequest.dropoff_code == code),
        )
    )
    result = await session.execute(query)
    return bool(result.scalar())
