from __future__ import annotations

import logging

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.system_settings import SETTINGS_ROW_ID, SettingsBackup, SystemSettings
from app.models.user import User
from app.schemas.settings import (
    LoanSettings,
    SettingsSection,
    SettingsUpdate,
    SystemSettingsPayload,
)
from app.services.audit import record_audit_log, serialize_for_audit

logger = logging.getLogger(__name__)

PASSWORD_MASK = "********"
DEFAULT_SETTINGS = SystemSettingsPayload()


def _validation_error(exc: ValidationError) -> HTTPException:
    errors = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "invalid_settings", "message": "Invalid settings", "details": {"errors": errors}},
    )


def _dump(payload: SystemSettingsPayload) -> dict:
    return serialize_for_audit(payload.model_dump(mode="json"))


def masked(payload: SystemSettingsPayload) -> dict:
    data = payload.model_dump(mode="json")
    if data["email"].get("smtp_password"):
        data["email"]["smtp_password"] = PASSWORD_MASK
    return data


async def _get_row(db: AsyncSession) -> SystemSettings | None:
    return await db.get(SystemSettings, SETTINGS_ROW_ID)


async def get_system_settings(db: AsyncSession) -> SystemSettingsPayload:
    row = await _get_row(db)
    if row is None or not row.data:
        return DEFAULT_SETTINGS.model_copy(deep=True)
    merged = DEFAULT_SETTINGS.model_dump(mode="json")
    for section, values in (row.data or {}).items():
        if section in merged and isinstance(values, dict):
            merged[section].update(values)
    try:
        return SystemSettingsPayload.model_validate(merged)
    except ValidationError:
        logger.warning("Stored system settings are invalid; falling back to defaults")
        return DEFAULT_SETTINGS.model_copy(deep=True)


async def get_loan_settings(db: AsyncSession) -> LoanSettings:
    return (await get_system_settings(db)).loan


async def _save(db: AsyncSession, payload: SystemSettingsPayload, actor: User) -> SystemSettings:
    row = await _get_row(db)
    if row is None:
        row = SystemSettings(id=SETTINGS_ROW_ID)
    row.data = _dump(payload)
    row.updated_by = actor.id
    db.add(row)
    return row


async def update_system_settings(
    db: AsyncSession,
    actor: User,
    update: SettingsUpdate,
) -> SystemSettingsPayload:
    current = await get_system_settings(db)
    merged = current.model_dump(mode="json")
    changed_sections: list[str] = []
    for section, values in update.model_dump(exclude_none=True).items():
        values = dict(values)
        if section == SettingsSection.EMAIL.value and values.get("smtp_password") == PASSWORD_MASK:
            values.pop("smtp_password")
        unknown = set(values) - set(merged[section])
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown {section} settings: {', '.join(sorted(unknown))}",
            )
        merged[section].update(values)
        changed_sections.append(section)
    if not changed_sections:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No settings provided")
    try:
        updated = SystemSettingsPayload.model_validate(merged)
    except ValidationError as exc:
        raise _validation_error(exc) from exc

    await _save(db, updated, actor)
    record_audit_log(
        db,
        actor_id=actor.id,
        action="settings.update",
        resource_type="system_settings",
        resource_id=str(SETTINGS_ROW_ID),
        old_value=masked(current),
        new_value=masked(updated),
    )
    await db.commit()
    return updated


async def reset_system_settings(
    db: AsyncSession,
    actor: User,
    section: SettingsSection | str | None = None,
) -> SystemSettingsPayload:
    current = await get_system_settings(db)
    if section:
        key = section.value if isinstance(section, SettingsSection) else str(section)
        data = current.model_dump(mode="json")
        data[key] = DEFAULT_SETTINGS.model_dump(mode="json")[key]
        updated = SystemSettingsPayload.model_validate(data)
    else:
        updated = DEFAULT_SETTINGS.model_copy(deep=True)
    await _save(db, updated, actor)
    record_audit_log(
        db,
        actor_id=actor.id,
        action="settings.reset",
        resource_type="system_settings",
        resource_id=str(SETTINGS_ROW_ID),
        old_value=masked(current),
        new_value=masked(updated),
    )
    await db.commit()
    return updated


async def backup_system_settings(db: AsyncSession, actor: User, label: str | None = None) -> SettingsBackup:
    current = await get_system_settings(db)
    backup = SettingsBackup(label=label, data=_dump(current), created_by=actor.id)
    db.add(backup)
    await db.flush()
    record_audit_log(
        db,
        actor_id=actor.id,
        action="settings.backup",
        resource_type="system_settings",
        resource_id=str(SETTINGS_ROW_ID),
        new_value={"backup_id": str(backup.id), "label": label},
    )
    await db.commit()
    await db.refresh(backup)
    return backup
