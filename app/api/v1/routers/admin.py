from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models import User
from app.schemas.common import Pagination
from app.schemas.payments import (
    PaymentExportRequest,
    PaymentFilters,
    PaymentListResponse,
    PaymentPagination,
)
from app.schemas.reactivation import ReactivationDecision, ReactivationListResponse, ReactivationRequestOut
from app.schemas.statistics import AnalyticsActionRequest, AnalyticsResponse, TimeRange
from app.schemas.users import (
    AdminUserOut,
    AdminUserUpdate,
    DsaVerifyRequest,
    UserListResponse,
    UserStatusFilter,
    UserStatusUpdate,
)
from app.services import admin_users, exports, reactivation, statistics
from app.services import payments as payment_service
from app.services import users as user_service

router = APIRouter(prefix="/admin", tags=["admin"])


def _csv_response(content: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _with_statistics(db: AsyncSession, users: list[User]) -> list[AdminUserOut]:
    summaries = await admin_users.review_summaries(db, [user.id for user in users if user.role == "dsa"])
    return [admin_users.to_admin_user_out(user, summaries.get(user.id)) for user in users]


@router.get("/users", response_model=UserListResponse)
async def list_users(
    role: str | None = Query(default=None, pattern="^(admin|dsa|user|all)$"),
    status_filter: UserStatusFilter | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    _: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    users, total = await admin_users.list_users(
        db, role=role, status_filter=status_filter, search=search, page=page, limit=limit
    )
    return UserListResponse(
        users=await _with_statistics(db, users),
        pagination=Pagination.build(total, page, limit),
    )


@router.get("/users/{user_id}", response_model=AdminUserOut)
async def get_user(
    user_id: UUID,
    _: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> AdminUserOut:
    user = await user_service.get_user_or_404(db, user_id)
    return (await _with_statistics(db, [user]))[0]


@router.put("/users/{user_id}", response_model=AdminUserOut)
async def update_user(
    user_id: UUID,
    payload: AdminUserUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> AdminUserOut:
    user = await admin_users.update_user(db, current_user, user_id, payload)
    return admin_users.to_admin_user_out(user)


@router.patch("/users/{user_id}/status", response_model=AdminUserOut)
async def update_user_status(
    user_id: UUID,
    payload: UserStatusUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> AdminUserOut:
    user = await admin_users.update_user_status(db, current_user, user_id, payload.status, payload.reason)
    return admin_users.to_admin_user_out(user)


@router.put("/users/{user_id}/verify", response_model=AdminUserOut)
async def verify_dsa(
    user_id: UUID,
    payload: DsaVerifyRequest,
    current_user: User = Depends(deps.require_permission(PermissionCode.DSA_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> AdminUserOut:
    user = await admin_users.verify_dsa(db, current_user, user_id, payload.is_verified)
    return admin_users.to_admin_user_out(user)


@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    status_filter: str | None = Query(default=None, alias="status"),
    payment_method: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: User = Depends(deps.require_permission(PermissionCode.PAYMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentListResponse:
    filters = PaymentFilters(
        status=status_filter,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    payments, pagination = await payment_service.list_payments(db, filters, page=page, limit=limit)
    return PaymentListResponse(
        payments=[payment_service.to_payment_out(payment) for payment in payments],
        pagination=PaymentPagination(**pagination),
        statistics=await payment_service.payment_statistics(db),
    )


@router.post("/payments", response_class=StreamingResponse)
async def export_payments(
    payload: PaymentExportRequest,
    _: User = Depends(deps.require_permission(PermissionCode.PAYMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    payments = await payment_service.all_filtered_payments(db, payload)
    filename = f"payments_{datetime.now(timezone.utc):%Y%m%d_%H%M%S}.csv"
    return _csv_response(exports.payments_to_csv(payments), filename)


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    time_range: TimeRange = Query(default=TimeRange.LAST_30_DAYS),
    _: User = Depends(deps.require_permission(PermissionCode.ANALYTICS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AnalyticsResponse:
    return await statistics.get_analytics(db, time_range)


@router.post("/analytics")
async def analytics_action(
    payload: AnalyticsActionRequest,
    _: User = Depends(deps.require_permission(PermissionCode.ANALYTICS_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    if payload.action == "export":
        analytics = await statistics.get_analytics(db, payload.time_range)
        filename = f"analytics_{payload.time_range}_{analytics.generated_at:%Y%m%d}.csv"
        return _csv_response(exports.analytics_to_csv(analytics), filename)
    return {"message": "Analytics refreshed", "generated_at": datetime.now(timezone.utc).isoformat()}


@router.get("/dsa-reactivation", response_model=ReactivationListResponse)
async def list_reactivation_requests(
    status_filter: str | None = Query(default="pending", alias="status", pattern="^(pending|approved|rejected|all)$"),
    _: User = Depends(deps.require_permission(PermissionCode.DSA_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> ReactivationListResponse:
    requests = await reactivation.list_requests(db, status_filter=status_filter)
    return ReactivationListResponse(
        requests=[reactivation.to_request_out(request) for request in requests],
        total=len(requests),
    )


@router.post("/dsa-reactivation", response_model=ReactivationRequestOut)
async def process_reactivation_request(
    payload: ReactivationDecision,
    current_user: User = Depends(deps.require_permission(PermissionCode.DSA_VERIFY)),
    db: AsyncSession = Depends(get_db),
) -> ReactivationRequestOut:
    request = await reactivation.process_request(
        db, current_user, payload.dsa_id, payload.action, payload.admin_notes
    )
    return reactivation.to_request_out(request)
