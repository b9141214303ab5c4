from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models import User
from app.schemas.applications import NextApplicationRequest, NextApplicationResponse
from app.schemas.reactivation import ReactivationRequestCreate, ReactivationRequestOut
from app.schemas.statistics import DsaStatistics
from app.services import applications as application_service
from app.services import dsa_workflow, reactivation

router = APIRouter(prefix="/dsa", tags=["dsa"])


def _next_response(result: dict, viewer: User) -> NextApplicationResponse:
    application = result.get("application")
    return NextApplicationResponse(
        application=application_service.to_application_out(application, viewer) if application else None,
        message=result["message"],
        time_remaining_hours=result.get("time_remaining_hours"),
        is_urgent=bool(result.get("is_urgent")),
        has_completed_all=bool(result.get("has_completed_all")),
        pending_applications=int(result.get("pending_applications") or 0),
    )


@router.get("/next-application", response_model=NextApplicationResponse)
async def get_next_application(
    current_user: User = Depends(deps.require_verified_dsa),
    db: AsyncSession = Depends(get_db),
) -> NextApplicationResponse:
    result = await dsa_workflow.get_next_application(db, current_user)
    return _next_response(result, current_user)


@router.post("/next-application", response_model=NextApplicationResponse)
async def advance_to_next_application(
    payload: NextApplicationRequest,
    current_user: User = Depends(deps.require_verified_dsa),
    db: AsyncSession = Depends(get_db),
) -> NextApplicationResponse:
    result = await dsa_workflow.advance(db, current_user, skip_to_next=payload.skip_to_next)
    return _next_response(result, current_user)


@router.get("/statistics", response_model=DsaStatistics)
async def get_my_statistics(
    current_user: User = Depends(deps.require_verified_dsa),
    db: AsyncSession = Depends(get_db),
) -> DsaStatistics:
    return await dsa_workflow.dsa_statistics(db, current_user)


@router.post(
    "/reactivation-request",
    response_model=ReactivationRequestOut,
    status_code=status.HTTP_201_CREATED,
)
async def submit_reactivation_request(
    payload: ReactivationRequestCreate,
    current_user: User = Depends(deps.get_current_user_allow_inactive),
    db: AsyncSession = Depends(get_db),
) -> ReactivationRequestOut:
    request = await reactivation.submit_request(db, current_user, payload)
    return reactivation.to_request_out(request)


@router.get("/reactivation-request", response_model=ReactivationRequestOut | None)
async def get_reactivation_request(
    current_user: User = Depends(deps.get_current_user_allow_inactive),
    db: AsyncSession = Depends(get_db),
) -> ReactivationRequestOut | None:
    request = await reactivation.get_latest_request(db, current_user)
    return reactivation.to_request_out(request) if request else None
