from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import UserRole
from app.models.application_review import ApplicationReview
from app.models.user import User
from app.schemas.users import AdminUserOut, AdminUserUpdate, DsaStatisticsSummary, UserStatusFilter
from app.services import notifications, users as users_service
from app.services.audit import model_snapshot, record_audit_log
from app.services.email_service import send_best_effort


def _status_filter(value: UserStatusFilter | str):
    value = value.value if isinstance(value, UserStatusFilter) else str(value)
    return {
        UserStatusFilter.ACTIVE.value: User.is_active.is_(True),
        UserStatusFilter.INACTIVE.value: User.is_active.is_(False),
        UserStatusFilter.VERIFIED.value: User.is_verified.is_(True),
        UserStatusFilter.UNVERIFIED.value: User.is_verified.is_(False),
    }[value]


async def list_users(
    db: AsyncSession,
    *,
    role: str | None = None,
    status_filter: UserStatusFilter | str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[User], int]:
    filters = []
    if role and role != "all":
        filters.append(User.role == role)
    if status_filter:
        filters.append(_status_filter(status_filter))
    if search and search.strip():
        term = f"%{search.strip()}%"
        filters.append(
            or_(
                User.first_name.ilike(term),
                User.last_name.ilike(term),
                User.email.ilike(term),
                User.phone.ilike(term),
                User.dsa_id.ilike(term),
            )
        )
    base_stmt = select(User).where(*filters)
    total = (await db.execute(select(func.count()).select_from(base_stmt.subquery()))).scalar_one()
    stmt = base_stmt.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit)
    items = (await db.execute(stmt)).scalars().all()
    return list(items), int(total or 0)


async def review_summaries(db: AsyncSession, dsa_ids: list[UUID]) -> dict[UUID, DsaStatisticsSummary]:
    if not dsa_ids:
        return {}
    stmt = (
        select(ApplicationReview.dsa_id, ApplicationReview.status, func.count())
        .where(ApplicationReview.dsa_id.in_(dsa_ids))
        .group_by(ApplicationReview.dsa_id, ApplicationReview.status)
    )
    counts: dict[UUID, dict[str, int]] = {}
    for dsa_id, review_status, count in (await db.execute(stmt)).all():
        counts.setdefault(dsa_id, {})[review_status] = int(count)
    summaries = {}
    for dsa_id in dsa_ids:
        by_status = counts.get(dsa_id, {})
        approved = by_status.get("approved", 0)
        rejected = by_status.get("rejected", 0)
        missed = by_status.get("missed", 0)
        finished = approved + rejected + missed
        summaries[dsa_id] = DsaStatisticsSummary(
            total_reviewed=approved + rejected,
            approved=approved,
            rejected=rejected,
            missed_deadlines=missed,
            deadline_compliance=round((approved + rejected) / finished * 100, 2) if finished else 100.0,
        )
    return summaries


def to_admin_user_out(user: User, summary: DsaStatisticsSummary | None = None) -> AdminUserOut:
    return AdminUserOut.model_validate(user).model_copy(update={"statistics": summary})


async def update_user(db: AsyncSession, actor: User, user_id: UUID, payload: AdminUserUpdate) -> User:
    user = await users_service.get_user_or_404(db, user_id)
    data = payload.model_dump(exclude_unset=True, mode="json")
    email = data.get("email")
    if email:
        data["email"] = email = email.strip().lower()
    await users_service.ensure_unique_contact(
        db,
        email=email if email and email != user.email else None,
        phone=data.get("phone") if data.get("phone") and data["phone"] != user.phone else None,
        exclude_id=user.id,
    )
    if ("bank_name" in data or "branch_code" in data) and user.role != UserRole.DSA.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Bank details apply to DSA accounts only",
        )

    before = model_snapshot(user)
    users_service.apply_profile_changes(user, data)
    for field in ("email", "bank_name", "branch_code"):
        if data.get(field) is not None:
            setattr(user, field, data[field])
    db.add(user)
    record_audit_log(
        db,
        actor_id=actor.id,
        action="user.update",
        resource_type="user",
        resource_id=str(user.id),
        old_value=before,
        new_value=model_snapshot(user),
    )
    await db.commit()
    await db.refresh(user)
    return user


async def update_user_status(
    db: AsyncSession,
    actor: User,
    user_id: UUID,
    new_status: str,
    reason: str | None = None,
) -> User:
    user = await users_service.get_user_or_404(db, user_id)
    activate = new_status == "active"
    if user.id == actor.id and not activate:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    if bool(user.is_active) == activate:
        return user

    old_value = {"is_active": user.is_active}
    user.is_active = activate
    if activate:
        user.deactivated_at = None
        user.deactivation_reason = None
    else:
        user.deactivated_at = datetime.now(timezone.utc)
        user.deactivation_reason = reason
        user.token_version = (user.token_version or 0) + 1
    db.add(user)
    notifications.notify(
        db,
        user.id,
        "Account Activated" if activate else "Account Deactivated",
        "Your account has been activated."
        if activate
        else f"Your account has been deactivated.{f' Reason: {reason}' if reason else ''}",
        "success" if activate else "warning",
    )
    record_audit_log(
        db,
        actor_id=actor.id,
        action="user.status_update",
        resource_type="user",
        resource_id=str(user.id),
        old_value=old_value,
        new_value={"is_active": activate, "reason": reason},
    )
    await db.commit()
    await db.refresh(user)
    return user


async def verify_dsa(db: AsyncSession, actor: User, user_id: UUID, is_verified: bool) -> User:
    user = await users_service.get_user_or_404(db, user_id)
    if user.role != UserRole.DSA.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only DSA accounts can be verified")

    old_value = {"is_verified": user.is_verified}
    user.is_verified = is_verified
    user.verified_by = actor.id if is_verified else None
    user.verified_at = datetime.now(timezone.utc) if is_verified else None
    db.add(user)
    notifications.notify(
        db,
        user.id,
        "Account Verified" if is_verified else "Verification Revoked",
        "Your DSA account has been verified. You can now review applications."
        if is_verified
        else "Your DSA verification has been revoked. Please contact support.",
        "success" if is_verified else "warning",
        "/dsa" if is_verified else None,
    )
    record_audit_log(
        db,
        actor_id=actor.id,
        action="dsa.verify",
        resource_type="user",
        resource_id=str(user.id),
        old_value=old_value,
        new_value={"is_verified": is_verified},
    )
    await db.commit()
    await db.refresh(user)
    await send_best_effort(
        "dsa_verified",
        {"first_name": user.first_name, "dsa_id": user.dsa_id, "is_verified": is_verified},
        user.email,
    )
    return user
