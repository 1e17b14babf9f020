from fastapi import APIRouter, Query, status

from ...schemas.notification import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from ...services.notification_service import NotificationService
from ...services.results import Actor
from ..deps import ActorDep, NotificationServiceDep

router = APIRouter(prefix="/notifications")


@router.get("/", status_code=status.HTTP_200_OK)
async def list_notifications(
    unread_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    actor: Actor = ActorDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationListResponse:
    """The caller's notifications, newest first"""
    result = await notification_service.list_notifications(
        actor, unread_only=unread_only, skip=skip, limit=limit
    )
    return NotificationListResponse.model_validate(result.unwrap(), from_attributes=True)


@router.get("/unread-count", status_code=status.HTTP_200_OK)
async def unread_count(
    actor: Actor = ActorDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> UnreadCountResponse:
    unread = (await notification_service.unread_count(actor)).unwrap()
    return UnreadCountResponse(unread=unread)


@router.post("/read-all", status_code=status.HTTP_200_OK)
async def mark_all_read(
    actor: Actor = ActorDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> MarkAllReadResponse:
    updated = (await notification_service.mark_all_read(actor)).unwrap()
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", status_code=status.HTTP_200_OK)
async def mark_read(
    notification_id: int,
    actor: Actor = ActorDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationResponse:
    notification = (await notification_service.mark_read(actor, notification_id)).unwrap()
    return NotificationResponse.model_validate(notification)
