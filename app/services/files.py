from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.permissions import UserRole
from app.core.settings import settings
from app.models.file_upload import FileUpload
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.files import FileOut
from app.services import authz
from app.services.audit import record_audit_log
from app.services.storage.adapter import StorageError
from app.services.storage.service import delete_stored_object, signed_download_url, store_upload
from app.services.uploads import (
    CHAT_DOCUMENT_TYPE,
    UploadValidationError,
    ValidatedUpload,
    read_upload,
    rule_for_document_type,
)

logger = logging.getLogger(__name__)


def to_file_out(record: FileUpload) -> FileOut:
    uploader = record.__dict__.get("uploader")
    return FileOut.model_validate(record).model_copy(
        update={
            "uploader_name": uploader.full_name if uploader else None,
            "uploader_email": uploader.email if uploader else None,
        }
    )


def can_view_file(user: User, record: FileUpload) -> bool:
    if user.role == UserRole.ADMIN.value or authz.is_verified_dsa(user):
        return True
    if record.uploaded_by == user.id:
        return True
    application = record.__dict__.get("application")
    return application is not None and application.user_id == user.id


async def _owned_application(db: AsyncSession, user: User, application_id: UUID) -> LoanApplication:
    application = await db.get(LoanApplication, application_id)
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    if user.role == UserRole.USER.value and application.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only upload documents to your own applications",
        )
    return application


async def save_validated_upload(
    db: AsyncSession,
    user: User,
    upload: ValidatedUpload,
    *,
    kind: str,
    document_type: str,
    application_id: UUID | None = None,
    chat_id: UUID | None = None,
    owner_refs: dict[str, str] | None = None,
) -> FileUpload:
    """Push bytes to the object store and stage the FileUpload row; the caller commits."""
    metadata = {"document_type": document_type, "uploaded_by": str(user.id)}
    if application_id:
        metadata["application_id"] = str(application_id)
    if chat_id:
        metadata["chat_id"] = str(chat_id)
    stored = await store_upload(upload, kind=kind, owner_refs=owner_refs, metadata=metadata)
    record = FileUpload(
        original_name=upload.original_name,
        object_key=stored.key,
        file_url=stored.url,
        file_type=upload.extension.lstrip(".") or "bin",
        mime_type=upload.content_type,
        file_size=upload.size,
        document_type=document_type,
        storage_provider=settings.storage_provider,
        storage_bucket=None if settings.storage_provider == "local" else settings.s3_bucket,
        metadata_={**metadata, "etag": stored.etag},
        uploaded_by=user.id,
        application_id=application_id,
        chat_id=chat_id,
        status="pending",
    )
    db.add(record)
    return record


async def upload_file(
    db: AsyncSession,
    user: User,
    file: UploadFile,
    *,
    document_type: str,
    application_id: UUID | None = None,
    chat_id: UUID | None = None,
) -> FileUpload:
    if application_id:
        await _owned_application(db, user, application_id)
    try:
        upload = await read_upload(file, rule_for_document_type(document_type))
    except UploadValidationError as exc:
        logger.info("Rejected upload", extra={"operation": "upload", "success": False, "reason": exc.message})
        raise exc.to_http() from exc

    if document_type == CHAT_DOCUMENT_TYPE and chat_id:
        kind, owner_refs = "chat", {"chat_id": str(chat_id)}
    else:
        kind, owner_refs = "document", None
    record = await save_validated_upload(
        db,
        user,
        upload,
        kind=kind,
        document_type=document_type,
        application_id=application_id,
        chat_id=chat_id,
        owner_refs=owner_refs,
    )
    await db.commit()
    await db.refresh(record)
    return record


async def list_files(
    db: AsyncSession,
    user: User,
    *,
    application_id: UUID | None = None,
    document_type: str | None = None,
    user_id: UUID | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[FileUpload], int]:
    filters = []
    if application_id:
        filters.append(FileUpload.application_id == application_id)
    if document_type:
        filters.append(FileUpload.document_type == document_type)
    if user.role == UserRole.USER.value:
        filters.append(FileUpload.uploaded_by == user.id)
    elif user_id:
        filters.append(FileUpload.uploaded_by == user_id)

    base_stmt = select(FileUpload).where(*filters)
    total = (await db.execute(select(func.count()).select_from(base_stmt.subquery()))).scalar_one()
    stmt = (
        base_stmt.options(selectinload(FileUpload.uploader))
        .order_by(FileUpload.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = (await db.execute(stmt)).scalars().all()
    return list(items), int(total or 0)


async def get_file(db: AsyncSession, user: User, file_id: UUID) -> FileUpload:
    stmt = (
        select(FileUpload)
        .options(selectinload(FileUpload.uploader), selectinload(FileUpload.application))
        .where(FileUpload.id == file_id)
    )
    record = (await db.execute(stmt)).scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not can_view_file(user, record):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return record


async def delete_file(db: AsyncSession, user: User, file_id: UUID) -> None:
    record = await get_file(db, user, file_id)
    if user.role != UserRole.ADMIN.value and record.uploaded_by != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    try:
        await delete_stored_object(record.object_key)
    except StorageError:
        logger.warning(
            "File delete", extra={"operation": "delete", "object_key": record.object_key, "success": False}
        )
        raise
    await db.delete(record)
    await db.commit()


async def get_download_url(db: AsyncSession, user: User, file_id: UUID) -> tuple[str, int]:
    record = await get_file(db, user, file_id)
    return await signed_download_url(record.object_key), settings.signed_url_expiry_seconds


async def verify_document(
    db: AsyncSession,
    actor: User,
    file_id: UUID,
    new_status: str,
    notes: str | None = None,
) -> FileUpload:
    record = await get_file(db, actor, file_id)
    old_status = record.status
    record.status = new_status
    record.review_notes = notes
    if new_status == "pending":
        record.verified_by = None
        record.verified_at = None
    else:
        record.verified_by = actor.id
        record.verified_at = datetime.now(timezone.utc)
    db.add(record)
    record_audit_log(
        db,
        actor_id=actor.id,
        action="file.status_update",
        resource_type="file_upload",
        resource_id=str(record.id),
        old_value={"status": old_status},
        new_value={"status": new_status, "notes": notes},
    )
    await db.commit()
    await db.refresh(record)
    return record
