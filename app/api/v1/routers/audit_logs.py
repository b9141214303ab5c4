from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.audit import AuditActorSummary, AuditLogEntry, AuditLogListResponse
from app.services import audit as audit_service

router = APIRouter(prefix="/admin/audit-logs", tags=["audit-logs"])


@router.get("", response_model=AuditLogListResponse, summary="List audit logs")
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    feature: list[str] | None = Query(default=None, description="Action prefix, e.g. application or payment"),
    action: list[str] | None = Query(default=None),
    resource_type: str | None = Query(default=None),
    resource_id: str | None = Query(default=None),
    actor_id: UUID | None = Query(default=None),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    _: User = Depends(deps.require_permission(PermissionCode.AUDIT_LOG_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    rows, total = await audit_service.list_audit_logs(
        db,
        page=page,
        page_size=page_size,
        features=feature,
        actions=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        created_from=created_from,
        created_to=created_to,
    )
    items = []
    for entry, actor in rows:
        summary = None
        if actor is not None:
            summary = AuditActorSummary(user_id=actor.id, full_name=actor.full_name, email=actor.email, role=actor.role)
        items.append(AuditLogEntry.model_validate(entry).model_copy(update={"actor": summary}))
    return AuditLogListResponse(items=items, total=total)
