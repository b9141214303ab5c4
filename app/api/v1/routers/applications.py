from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models import User
from app.schemas.applications import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationOut,
    ApplicationSort,
    ApplicationStatusUpdate,
    DocumentSummary,
)
from app.services import applications as application_service

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("", response_model=ApplicationOut, status_code=status.HTTP_201_CREATED)
async def create_application(
    payload: ApplicationCreate,
    current_user: User = Depends(deps.require_permission(PermissionCode.APPLICATION_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    application = await application_service.create_application(db, current_user, payload)
    return application_service.to_application_out(application, current_user)


@router.post("/with-files", response_model=ApplicationOut, status_code=status.HTTP_201_CREATED)
async def create_application_with_files(
    request: Request,
    current_user: User = Depends(deps.require_permission(PermissionCode.APPLICATION_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    """Multipart submission: an ``application`` JSON field plus files keyed by document type."""
    form = await request.form()
    raw_application = form.get("application")
    if not raw_application or not isinstance(raw_application, str):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "missing_application",
                "message": "application field is required",
                "details": {"field": "application"},
            },
        )
    try:
        payload = ApplicationCreate.model_validate_json(raw_application)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    files = [
        (document_type, upload)
        for document_type, upload in form.multi_items()
        if isinstance(upload, StarletteUploadFile)
    ]
    application = await application_service.create_application_with_files(db, current_user, payload, files)
    return application_service.to_application_out(application, current_user)


@router.get("", response_model=ApplicationListResponse)
async def list_applications(
    status_filter: str | None = Query(default=None, alias="status"),
    user_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    sort_by: ApplicationSort = Query(default=ApplicationSort.NEWEST),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ApplicationListResponse:
    if current_user.role == "dsa":
        await deps.require_verified_dsa(current_user)
    items, total, total_pages = await application_service.list_applications(
        db,
        current_user,
        status_filter=status_filter,
        user_id=user_id,
        search=search,
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    return ApplicationListResponse(
        applications=[application_service.to_application_out(item, current_user) for item in items],
        total=total,
        page=page,
        total_pages=total_pages,
    )


@router.get("/{application_id}", response_model=ApplicationOut)
async def get_application(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    application = await application_service.get_application(db, current_user, application_id)
    return application_service.to_application_out(application, current_user)


@router.put("/{application_id}/status", response_model=ApplicationOut)
async def update_application_status(
    application_id: UUID,
    payload: ApplicationStatusUpdate,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    application = await application_service.update_status(
        db, current_user, application_id, payload.status, payload.comments
    )
    return application_service.to_application_out(application, current_user)


@router.get("/{application_id}/documents", response_model=list[DocumentSummary])
async def get_application_documents(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentSummary]:
    documents = await application_service.get_application_documents(db, current_user, application_id)
    return [DocumentSummary.model_validate(document) for document in documents]


@router.post("/{application_id}/cancel", response_model=ApplicationOut)
async def cancel_application(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    application = await application_service.cancel_application(db, current_user, application_id)
    return application_service.to_application_out(application, current_user)
