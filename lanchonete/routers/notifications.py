"""
In-app notification endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from lanchonete.core.security import UserRole
from lanchonete.deps import get_current_user, get_notification_service, require_role
from lanchonete.models import NotificationPriority, NotificationType, User
from lanchonete.schemas import Envelope, NotificationCreate, NotificationOut, NotificationPage, paginate
from lanchonete.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("", response_model=Envelope[NotificationPage])
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[NotificationType] = Query(None),
    is_read: Optional[bool] = Query(None),
    priority: Optional[NotificationPriority] = Query(None),
    service: NotificationService = Depends(get_notification_service),
    user: User = Depends(get_current_user),
):
    items, total, unread = await service.list_for_user(
        user, page=page, limit=limit, type=type, is_read=is_read, priority=priority,
    )
    data = paginate([NotificationOut.model_validate(n) for n in items], total, page, limit)
    data["unread_count"] = unread
    return Envelope(data=data)


@router.post("", response_model=Envelope[NotificationOut], status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: NotificationCreate,
    service: NotificationService = Depends(get_notification_service),
    user: User = Depends(require_role(UserRole.STAFF)),
):
    notification = await service.create(**payload.model_dump())
    logger.info(f"🔔 Notification #{notification.id} created by user #{user.id}")
    return Envelope(data=NotificationOut.model_validate(notification), message="Notificação criada com sucesso")


@router.post("/mark-all-read", response_model=Envelope[dict])
async def mark_all_read(
    service: NotificationService = Depends(get_notification_service),
    user: User = Depends(get_current_user),
):
    count = await service.mark_all_read(user)
    return Envelope(data={"updated": count}, message=f"{count} notificações marcadas como lidas")


@router.patch("/{notification_id}", response_model=Envelope[NotificationOut])
async def mark_read(
    notification_id: int,
    is_read: bool = Body(True, embed=True),
    service: NotificationService = Depends(get_notification_service),
    user: User = Depends(get_current_user),
):
    notification = await service.mark_read(notification_id, user, is_read)
    return Envelope(data=NotificationOut.model_validate(notification))


@router.delete("/{notification_id}", response_model=Envelope[dict])
async def delete_notification(
    notification_id: int,
    service: NotificationService = Depends(get_notification_service),
    user: User = Depends(get_current_user),
):
    await service.soft_delete(notification_id, user)
    return Envelope(data={"id": notification_id}, message="Notificação removida")
