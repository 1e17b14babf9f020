"""
Notification fan-out and the owner-facing notification operations.
"""

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, PermissionDenied
from ..models.base import utcnow
from ..models.notification import Notification, NotificationType
from ..repository.notification_repository import NotificationRepository
from ..utils.logging import setup_fulfillment_logging as setup_logging
from .results import Actor, TransactionalService, unit_of_work

logger = setup_logging("fulfillment_service.notifications", log_level="INFO")


def dedupe_key(entity_type: str, entity_id: int, target_state: str, recipient_id: int) -> str:
    return f"{entity_type}:{entity_id}:{target_state}:{recipient_id}"


class NotificationDispatcher:
    """
    Creates notification rows as a side effect of state transitions.

    Runs inside the caller's transaction. At most one notification exists
    per (entity, target state, recipient); a retried transition is a no-op.
    """

    def __init__(self, session: AsyncSession):
        self.repository = NotificationRepository(session)

    async def dispatch(
        self,
        recipient_id: int,
        notification_type: NotificationType,
        entity_type: str,
        entity_id: int,
        target_state: str,
        title: str,
        message: str,
    ) -> Optional[Notification]:
        key = dedupe_key(entity_type, entity_id, target_state, recipient_id)
        if await self.repository.get_by_dedupe_key(key):
            logger.info(
                "Notification already dispatched",
                extra={"dedupe_key": key, "recipient_id": recipient_id},
            )
            return None

        return await self.repository.create(
            user_id=recipient_id,
            title=title,
            message=message,
            type=notification_type.value,
            related_entity_type=entity_type,
            related_entity_id=entity_id,
            is_read=False,
            dedupe_key=key,
        )


class NotificationService(TransactionalService):
    def __init__(self, session: AsyncSession, event_producer: Optional[Any] = None):
        super().__init__(session, event_producer)
        self.repository = NotificationRepository(session)

    @unit_of_work("list_notifications")
    async def list_notifications(
        self,
        actor: Actor,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        notifications, total = await self.repository.list_for_user(
            actor.user_id, unread_only=unread_only, skip=skip, limit=limit
        )
        return {
            "notifications": notifications,
            "total": total,
            "unread": await self.repository.unread_count(actor.user_id),
            "skip": skip,
            "limit": limit,
        }

    @unit_of_work("unread_notification_count")
    async def unread_count(self, actor: Actor) -> int:
        return await self.repository.unread_count(actor.user_id)

    @unit_of_work("mark_notification_read")
    async def mark_read(self, actor: Actor, notification_id: int) -> Notification:
        notification = await self.repository.get_by_id(notification_id)
        if notification is None:
            raise NotFoundError(
                "Notification not found",
                details={"notification_id": notification_id},
            )
        if notification.user_id != actor.user_id:
            raise PermissionDenied(
                "Notifications can only be marked read by their owner",
                details={"notification_id": notification_id},
            )
        await self.repository.mark_read(notification, read_at=utcnow())
        return notification

    @unit_of_work("mark_all_notifications_read")
    async def mark_all_read(self, actor: Actor) -> int:
        updated = await self.repository.mark_all_read(actor.user_id, read_at=utcnow())
        logger.info(
            "Notifications marked read",
            extra={"user_id": actor.user_id, "updated": updated},
        )
        return updated
