from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.permissions import UserRole
from app.models.reactivation_request import DsaReactivationRequest
from app.models.user import User
from app.schemas.reactivation import ReactivationRequestCreate, ReactivationRequestOut
from app.services import notifications
from app.services.audit import record_audit_log


def to_request_out(request: DsaReactivationRequest) -> ReactivationRequestOut:
    dsa = request.__dict__.get("dsa")
    return ReactivationRequestOut.model_validate(request).model_copy(
        update={
            "dsa_name": dsa.full_name if dsa else None,
            "dsa_email": dsa.email if dsa else None,
            "dsa_code": dsa.dsa_id if dsa else None,
            "bank_name": dsa.bank_name if dsa else None,
        }
    )


async def _pending_for(db: AsyncSession, dsa_id: UUID) -> DsaReactivationRequest | None:
    stmt = select(DsaReactivationRequest).where(
        DsaReactivationRequest.dsa_id == dsa_id,
        DsaReactivationRequest.status == "pending",
    )
    return (await db.execute(stmt)).scalars().first()


async def submit_request(
    db: AsyncSession,
    dsa: User,
    payload: ReactivationRequestCreate,
) -> DsaReactivationRequest:
    if dsa.role != UserRole.DSA.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="DSA access required")
    if dsa.is_active and dsa.is_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Your account is already active")
    if await _pending_for(db, dsa.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A reactivation request is already pending review",
        )
    request = DsaReactivationRequest(
        dsa_id=dsa.id,
        reason=payload.reason,
        clarification=payload.clarification,
        status="pending",
    )
    db.add(request)
    await notifications.notify_admins(
        db,
        "DSA Reactivation Request",
        f"{dsa.full_name} ({dsa.dsa_id or dsa.email}) requested account reactivation.",
        "warning",
        "/admin/dsa-reactivation",
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Request could not be saved") from exc
    await db.refresh(request)
    return request


async def get_latest_request(db: AsyncSession, dsa: User) -> DsaReactivationRequest | None:
    stmt = (
        select(DsaReactivationRequest)
        .where(DsaReactivationRequest.dsa_id == dsa.id)
        .order_by(DsaReactivationRequest.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def list_requests(db: AsyncSession, *, status_filter: str | None = "pending") -> list[DsaReactivationRequest]:
    stmt = select(DsaReactivationRequest).options(selectinload(DsaReactivationRequest.dsa))
    if status_filter and status_filter != "all":
        stmt = stmt.where(DsaReactivationRequest.status == status_filter)
    stmt = stmt.order_by(DsaReactivationRequest.created_at.asc())
    return list((await db.execute(stmt)).scalars().all())


async def process_request(
    db: AsyncSession,
    admin: User,
    dsa_id: UUID,
    action: str,
    admin_notes: str | None = None,
) -> DsaReactivationRequest:
    request = await _pending_for(db, dsa_id)
    if request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No pending reactivation request")
    dsa = await db.get(User, dsa_id)
    if dsa is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="DSA not found")

    now = datetime.now(timezone.utc)
    approved = action == "approve"
    request.status = "approved" if approved else "rejected"
    request.admin_notes = admin_notes
    request.processed_by = admin.id
    request.processed_at = now
    db.add(request)

    if approved:
        dsa.is_active = True
        dsa.is_verified = True
        dsa.verified_by = admin.id
        dsa.verified_at = now
        dsa.deactivated_at = None
        dsa.deactivation_reason = None
        db.add(dsa)
    notifications.notify(
        db,
        dsa.id,
        "Reactivation Approved" if approved else "Reactivation Rejected",
        "Your account has been reactivated."
        if approved
        else f"Your reactivation request was rejected.{f' Notes: {admin_notes}' if admin_notes else ''}",
        "success" if approved else "error",
    )
    record_audit_log(
        db,
        actor_id=admin.id,
        action=f"dsa.reactivation.{request.status}",
        resource_type="user",
        resource_id=str(dsa.id),
        new_value={"request_id": str(request.id), "status": request.status, "admin_notes": admin_notes},
    )
    await db.commit()
    await db.refresh(request)
    return request
