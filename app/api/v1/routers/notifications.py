from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models import User
from app.schemas.notifications import NotificationCountResponse, NotificationListResponse, NotificationOut
from app.services import notifications as notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])

notification_viewer = deps.require_permission(PermissionCode.NOTIFICATION_VIEW)


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(notification_viewer),
    db: AsyncSession = Depends(get_db),
) -> NotificationListResponse:
    items = await notification_service.list_notifications(
        db, current_user.id, unread_only=unread_only, limit=limit
    )
    return NotificationListResponse(
        notifications=[NotificationOut.model_validate(item) for item in items],
        unread_count=await notification_service.count_unread(db, current_user.id),
    )


@router.get("/count", response_model=NotificationCountResponse)
async def count_notifications(
    current_user: User = Depends(notification_viewer),
    db: AsyncSession = Depends(get_db),
) -> NotificationCountResponse:
    return NotificationCountResponse(count=await notification_service.count_unread(db, current_user.id))


@router.patch("/read-all", response_model=NotificationCountResponse)
async def mark_all_notifications_read(
    current_user: User = Depends(notification_viewer),
    db: AsyncSession = Depends(get_db),
) -> NotificationCountResponse:
    updated = await notification_service.mark_all_read(db, current_user.id)
    return NotificationCountResponse(count=updated)


@router.patch("/{notification_id}/read", response_model=NotificationOut)
async def mark_notification_read(
    notification_id: UUID,
    current_user: User = Depends(notification_viewer),
    db: AsyncSession = Depends(get_db),
) -> NotificationOut:
    notification = await notification_service.mark_read(db, current_user.id, notification_id)
    return NotificationOut.model_validate(notification)
