from datetime import datetime
from typing import Any, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.notification import Notification
from .base import refresh_columns


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_dedupe_key(self, dedupe_key: str) -> Optional[Notification]:
        query = select(Notification).where(Notification.dedupe_key == dedupe_key)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def create(self, **fields: Any) -> Notification:
        notification = Notification(**fields)
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get_by_id(self, notification_id: int) -> Optional[Notification]:
        query = (
            select(Notification)
            .where(Notification.id == notification_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def list_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Notification], int]:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        count_result = await self.session.execute(
            select(func.count(Notification.id)).where(*conditions)
        )
        total_count = count_result.scalar() or 0

        query = (
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total_count

    async def unread_count(self, user_id: int) -> int:
        query = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def mark_read(self, notification: Notification, read_at: datetime) -> None:
        stmt = (
            update(Notification)
            .where(Notification.id == notification.id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await refresh_columns(self.session, notification)

    async def mark_all_read(self, user_id: int, read_at: datetime) -> int:
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
