from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.settings import SettingsAction, SettingsActionRequest, SettingsUpdate
from app.services import settings as settings_service

router = APIRouter(prefix="/admin/settings", tags=["admin-settings"])

settings_admin = deps.require_permission(PermissionCode.SETTINGS_MANAGE)


@router.get("", summary="Get system settings (SMTP password masked)")
async def get_system_settings(
    _: User = Depends(settings_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    current = await settings_service.get_system_settings(db)
    return {"settings": settings_service.masked(current)}


@router.put("", summary="Merge changes into system settings")
async def update_system_settings(
    payload: SettingsUpdate,
    current_user: User = Depends(settings_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    updated = await settings_service.update_system_settings(db, current_user, payload)
    return {"message": "Settings updated successfully", "settings": settings_service.masked(updated)}


@router.post("", summary="Reset or back up system settings")
async def system_settings_action(
    payload: SettingsActionRequest,
    current_user: User = Depends(settings_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if payload.action == SettingsAction.BACKUP.value:
        backup = await settings_service.backup_system_settings(db, current_user, payload.label)
        return {
            "message": "Settings backup created",
            "backup_id": str(backup.id),
            "created_at": backup.created_at.isoformat() if backup.created_at else None,
        }
    updated = await settings_service.reset_system_settings(db, current_user, payload.section)
    message = f"{payload.section} settings reset to defaults" if payload.section else "Settings reset to defaults"
    return {"message": message, "settings": settings_service.masked(updated)}
