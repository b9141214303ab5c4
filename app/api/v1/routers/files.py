from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.core.settings import settings
from app.db.session import get_db
from app.models import User
from app.schemas.files import DownloadUrlResponse, FileListResponse, FileOut, FileStatusUpdate
from app.services import files as file_service
from app.services.storage.adapter import LocalFileSystemAdapter, verify_local_url_signature
from app.services.storage.service import get_storage_adapter

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/upload", response_model=FileOut, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    document_type: str = Form(..., min_length=1, max_length=50),
    application_id: UUID | None = Form(default=None),
    chat_id: UUID | None = Form(default=None),
    current_user: User = Depends(deps.require_permission(PermissionCode.FILE_UPLOAD)),
    db: AsyncSession = Depends(get_db),
) -> FileOut:
    record = await file_service.upload_file(
        db,
        current_user,
        file,
        document_type=document_type,
        application_id=application_id,
        chat_id=chat_id,
    )
    return file_service.to_file_out(record)


@router.get("", response_model=FileListResponse)
async def list_files(
    application_id: UUID | None = Query(default=None),
    document_type: str | None = Query(default=None),
    user_id: UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FileListResponse:
    items, total = await file_service.list_files(
        db,
        current_user,
        application_id=application_id,
        document_type=document_type,
        user_id=user_id,
        page=page,
        limit=limit,
    )
    return FileListResponse(files=[file_service.to_file_out(item) for item in items], total=total)


@router.get("/local-content", response_class=FileResponse)
async def get_local_content(
    key: str = Query(..., min_length=1),
    expires: int = Query(...),
    signature: str = Query(..., min_length=1),
) -> FileResponse:
    adapter = get_storage_adapter()
    if not isinstance(adapter, LocalFileSystemAdapter):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Local storage is not enabled")
    if not verify_local_url_signature(settings.secret_key, key, expires, signature):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "invalid_signature", "message": "Download link is invalid or expired", "details": {}},
        )
    try:
        file_path = adapter.resolve_path(key)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_document_path", "message": "Document path is invalid", "details": {}},
        ) from exc
    if not file_path.exists():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "document_missing", "message": "Document file does not exist", "details": {}},
        )
    return FileResponse(file_path, filename=file_path.name, media_type="application/octet-stream")


@router.get("/{file_id}", response_model=FileOut)
async def get_file(
    file_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FileOut:
    record = await file_service.get_file(db, current_user, file_id)
    return file_service.to_file_out(record)


@router.delete("/{file_id}", status_code=204)
async def delete_file(
    file_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    await file_service.delete_file(db, current_user, file_id)
    return None


@router.get("/{file_id}/download", response_model=DownloadUrlResponse)
async def get_download_url(
    file_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DownloadUrlResponse:
    url, expires_in = await file_service.get_download_url(db, current_user, file_id)
    return DownloadUrlResponse(url=url, expires_in=expires_in)


@router.put("/{file_id}/status", response_model=FileOut)
async def update_file_status(
    file_id: UUID,
    payload: FileStatusUpdate,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> FileOut:
    record = await file_service.verify_document(db, current_user, file_id, payload.status, payload.notes)
    return file_service.to_file_out(record)
