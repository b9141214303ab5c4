from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification
from app.models.user import User


def notify(
    db: AsyncSession,
    user_id: UUID,
    title: str,
    message: str,
    type: str = "info",
    link: str | None = None,
) -> Notification:
    """Queue an in-app notification on the session; the caller owns the commit."""
    notification = Notification(user_id=user_id, title=title, message=message, type=type, link=link)
    db.add(notification)
    return notification


async def notify_admins(
    db: AsyncSession,
    title: str,
    message: str,
    type: str = "info",
    link: str | None = None,
) -> list[Notification]:
    result = await db.execute(select(User.id).where(User.role == "admin", User.is_active.is_(True)))
    return [notify(db, admin_id, title, message, type, link) for admin_id in result.scalars().all()]


async def list_notifications(
    db: AsyncSession,
    user_id: UUID,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_unread(db: AsyncSession, user_id: UUID) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.user_id == user_id, Notification.read.is_(False)
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def mark_read(db: AsyncSession, user_id: UUID, notification_id: UUID) -> Notification:
    notification = await db.get(Notification, notification_id)
    if not notification or notification.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if not notification.read:
        notification.read = True
        notification.read_at = datetime.now(timezone.utc)
        db.add(notification)
        await db.commit()
        await db.refresh(notification)
    return notification


async def mark_all_read(db: AsyncSession, user_id: UUID) -> int:
    stmt = (
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=datetime.now(timezone.utc))
    )
    result = await db.execute(stmt)
    await db.commit()
    return int(result.rowcount or 0)
