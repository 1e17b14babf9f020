from typing import Any

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession


async def refresh_columns(session: AsyncSession, instance: Any) -> None:
    """
    Reload column values after a compare-and-set UPDATE. Relationships are
    left as loaded so async code never triggers an implicit lazy load.
    """
    column_keys = [attr.key for attr in inspect(type(instance)).column_attrs]
    await session.refresh(instance, attribute_names=column_keys)
