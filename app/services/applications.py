from __future__ import annotations

import logging
import math
import secrets
import string
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import HTTPException, UploadFile, status
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.fernet_crypto import mask_identifier
from app.core.permissions import UserRole
from app.core.settings import settings
from app.models.application_review import ApplicationReview
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.applications import (
    ApplicationCreate,
    ApplicationOut,
    ApplicationSort,
    ApplicationStatus,
    DocumentSummary,
    ReviewOut,
)
from app.services import authz, dsa_workflow, notifications, settings as settings_service
from app.services.audit import record_audit_log
from app.services.email_service import send_best_effort
from app.services.files import save_validated_upload
from app.services.storage.adapter import StorageError
from app.services.storage.service import delete_stored_object
from app.services.uploads import DOCUMENT_RULE, UploadValidationError, read_upload

logger = logging.getLogger(__name__)

PROGRESS_BY_STATUS = {
    ApplicationStatus.PENDING.value: 20,
    ApplicationStatus.UNDER_REVIEW.value: 50,
    ApplicationStatus.PARTIALLY_APPROVED.value: 75,
    ApplicationStatus.APPROVED.value: 100,
    ApplicationStatus.REJECTED.value: 100,
}
STATUS_LABELS = {
    "pending": "Pending",
    "under_review": "Under Review",
    "partially_approved": "Partially Approved",
    "approved": "Approved",
    "rejected": "Rejected",
    "cancelled": "Cancelled",
}
_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_application_number(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(6))
    return f"EDU{now:%y%m%d}{suffix}"


def progress_for_status(value: str) -> int:
    return PROGRESS_BY_STATUS.get(value, 0)


def _application_options():
    return (
        selectinload(LoanApplication.reviews).selectinload(ApplicationReview.dsa),
        selectinload(LoanApplication.documents),
    )


def to_application_out(
    application: LoanApplication,
    viewer: User | None = None,
    *,
    now: datetime | None = None,
    include_related: bool = True,
) -> ApplicationOut:
    personal_info = dict(application.personal_info or {})
    reveal = viewer is not None and (
        viewer.role == UserRole.ADMIN.value or viewer.id == application.user_id
    )
    aadhar = application.aadhar_number
    pan = application.pan_number
    personal_info["aadhar_number"] = aadhar if reveal else mask_identifier(aadhar)
    personal_info["pan_number"] = pan if reveal else mask_identifier(pan)

    reviews: list[ReviewOut] = []
    documents: list[DocumentSummary] = []
    if include_related:
        for review in application.__dict__.get("reviews") or []:
            dsa = review.__dict__.get("dsa")
            reviews.append(
                ReviewOut.model_validate(review).model_copy(
                    update={"dsa_name": dsa.full_name if dsa else None}
                )
            )
        documents = [
            DocumentSummary.model_validate(document)
            for document in application.__dict__.get("documents") or []
        ]

    deadline = None
    if application.status in dsa_workflow.REVIEWABLE_STATUSES:
        deadline = dsa_workflow.deadline_info(application, now)

    return ApplicationOut(
        id=application.id,
        application_number=application.application_number,
        user_id=application.user_id,
        personal_info=personal_info,
        education_info=application.education_info or {},
        loan_info=application.loan_info or {},
        financial_info=application.financial_info or {},
        co_applicant=application.co_applicant,
        loan_amount=application.loan_amount,
        status=application.status,
        priority=application.priority,
        payment_status=application.payment_status,
        service_charges_paid=bool(application.service_charges_paid),
        comments=application.comments,
        progress=progress_for_status(application.status),
        deadline=deadline,
        reviews=reviews,
        documents=documents,
        created_at=application.created_at,
        updated_at=application.updated_at,
    )


async def _check_loan_amount(db: AsyncSession, amount) -> None:
    limits = await settings_service.get_loan_settings(db)
    if amount < limits.min_loan_amount or amount > limits.max_loan_amount:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Loan amount must be between {limits.min_loan_amount} "
                f"and {limits.max_loan_amount}"
            ),
        )


def _build_application(user: User, payload: ApplicationCreate, now: datetime) -> LoanApplication:
    data = payload.model_dump(mode="json")
    personal_info = data["personal_info"]
    aadhar_number = personal_info.pop("aadhar_number")
    pan_number = personal_info.pop("pan_number")
    return LoanApplication(
        application_number=generate_application_number(now),
        user_id=user.id,
        personal_info=personal_info,
        aadhar_number=aadhar_number,
        pan_number=pan_number,
        education_info=data["education_info"],
        loan_info=data["loan_info"],
        financial_info=data["financial_info"],
        co_applicant=data.get("co_applicant"),
        loan_amount=payload.loan_info.amount,
        status=ApplicationStatus.PENDING.value,
        priority=data.get("priority") or "medium",
        payment_status="pending",
        service_charges_paid=False,
        review_deadline=now + timedelta(hours=settings.review_deadline_hours),
    )


async def _stage_submission_side_effects(
    db: AsyncSession, user: User, application: LoanApplication
) -> None:
    notifications.notify(
        db,
        user.id,
        "Application Submitted",
        f"Your loan application {application.application_number} has been submitted successfully.",
        "success",
        f"/applications/{application.id}",
    )
    await notifications.notify_admins(
        db,
        "New Loan Application",
        f"{application.applicant_name} submitted application {application.application_number}.",
        "info",
        f"/admin/applications/{application.id}",
    )
    record_audit_log(
        db,
        actor_id=user.id,
        action="application.create",
        resource_type="loan_application",
        resource_id=str(application.id),
        new_value={
            "application_number": application.application_number,
            "loan_amount": application.loan_amount,
            "status": application.status,
        },
    )


async def _send_submitted_email(application: LoanApplication) -> None:
    info = application.personal_info or {}
    await send_best_effort(
        "application_submitted",
        {
            "applicant_name": application.applicant_name,
            "application_number": application.application_number,
            "application_id": str(application.id),
            "loan_amount": application.loan_amount,
            "review_deadline": application.review_deadline.strftime("%d %b %Y %H:%M")
            if application.review_deadline
            else "",
        },
        info.get("email"),
    )


async def get_application_by_id(db: AsyncSession, application_id: UUID) -> LoanApplication | None:
    stmt = (
        select(LoanApplication)
        .options(*_application_options())
        .where(LoanApplication.id == application_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_application(
    db: AsyncSession,
    user: User,
    payload: ApplicationCreate,
    now: datetime | None = None,
) -> LoanApplication:
    now = now or datetime.now(timezone.utc)
    await _check_loan_amount(db, payload.loan_info.amount)
    application = _build_application(user, payload, now)
    db.add(application)
    await db.flush()
    await _stage_submission_side_effects(db, user, application)
    await db.commit()
    logger.info(
        "Loan application submitted",
        extra={"application_id": str(application.id), "application_number": application.application_number},
    )
    await _send_submitted_email(application)
    return await get_application_by_id(db, application.id) or application


async def create_application_with_files(
    db: AsyncSession,
    user: User,
    payload: ApplicationCreate,
    files: list[tuple[str, UploadFile]],
    now: datetime | None = None,
) -> LoanApplication:
    """Create an application and its documents in one transaction.

    Every file is validated before anything is written. If a later file, the
    side effects or the commit fail, objects already pushed to the store are
    removed again.
    """
    now = now or datetime.now(timezone.utc)
    await _check_loan_amount(db, payload.loan_info.amount)

    validated = []
    for document_type, upload_file in files:
        try:
            validated.append((document_type, await read_upload(upload_file, DOCUMENT_RULE)))
        except UploadValidationError as exc:
            exc.details.setdefault("field", document_type)
            raise exc.to_http() from exc

    application = _build_application(user, payload, now)
    db.add(application)
    await db.flush()

    stored_keys: list[str] = []
    try:
        for document_type, upload in validated:
            record = await save_validated_upload(
                db,
                user,
                upload,
                kind="document",
                document_type=document_type,
                application_id=application.id,
            )
            stored_keys.append(record.object_key)
        await _stage_submission_side_effects(db, user, application)
        await db.commit()
    except Exception:
        await db.rollback()
        for key in stored_keys:
            try:
                await delete_stored_object(key)
            except StorageError:
                logger.warning("Could not remove orphaned upload", extra={"object_key": key})
        raise

    await _send_submitted_email(application)
    return await get_application_by_id(db, application.id) or application


def _apply_sort(stmt, sort_by: ApplicationSort | str):
    sort_value = sort_by.value if isinstance(sort_by, ApplicationSort) else str(sort_by)
    if sort_value == ApplicationSort.OLDEST.value:
        return stmt.order_by(LoanApplication.created_at.asc())
    if sort_value == ApplicationSort.AMOUNT_DESC.value:
        return stmt.order_by(LoanApplication.loan_amount.desc(), LoanApplication.created_at.desc())
    if sort_value == ApplicationSort.AMOUNT_ASC.value:
        return stmt.order_by(LoanApplication.loan_amount.asc(), LoanApplication.created_at.desc())
    if sort_value == ApplicationSort.DEADLINE.value:
        return stmt.order_by(dsa_workflow.deadline_expr().asc(), LoanApplication.created_at.asc())
    return stmt.order_by(LoanApplication.created_at.desc())


def _search_filter(search: str):
    term = f"%{search.strip()}%"
    return or_(
        LoanApplication.application_number.ilike(term),
        LoanApplication.personal_info["first_name"].astext.ilike(term),
        LoanApplication.personal_info["last_name"].astext.ilike(term),
        LoanApplication.personal_info["email"].astext.ilike(term),
        LoanApplication.personal_info["phone"].astext.ilike(term),
        LoanApplication.education_info["institute_name"].astext.ilike(term),
        cast(LoanApplication.loan_amount, String).ilike(term),
    )


async def list_applications(
    db: AsyncSession,
    user: User,
    *,
    status_filter: str | None = None,
    user_id: UUID | None = None,
    search: str | None = None,
    sort_by: ApplicationSort | str = ApplicationSort.NEWEST,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[LoanApplication], int, int]:
    filters = []
    if user.role == UserRole.USER.value:
        filters.append(LoanApplication.user_id == user.id)
    elif user.role == UserRole.DSA.value:
        filters.append(LoanApplication.status.in_(dsa_workflow.REVIEWABLE_STATUSES))
    elif user_id:
        filters.append(LoanApplication.user_id == user_id)
    if status_filter and status_filter != "all":
        filters.append(LoanApplication.status == status_filter)
    if search and search.strip():
        filters.append(_search_filter(search))

    base_stmt = select(LoanApplication).where(*filters)
    total = (await db.execute(select(func.count()).select_from(base_stmt.subquery()))).scalar_one()
    stmt = _apply_sort(base_stmt.options(*_application_options()), sort_by)
    stmt = stmt.offset((page - 1) * limit).limit(limit)
    items = (await db.execute(stmt)).scalars().all()
    total = int(total or 0)
    return list(items), total, math.ceil(total / limit) if limit else 0


async def get_application(db: AsyncSession, user: User, application_id: UUID) -> LoanApplication:
    application = await get_application_by_id(db, application_id)
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    authz.ensure_can_view_application(user, application)
    return application


async def _notify_status_change(
    db: AsyncSession,
    application: LoanApplication,
    previous_status: str,
    comments: str | None,
) -> None:
    if application.status == previous_status:
        return
    label = STATUS_LABELS.get(application.status, application.status)
    kind = {"approved": "success", "rejected": "error", "cancelled": "warning"}.get(application.status, "info")
    notifications.notify(
        db,
        application.user_id,
        f"Application {label}",
        f"Your application {application.application_number} is now {label.lower()}.",
        kind,
        f"/applications/{application.id}",
    )
    await db.commit()
    await send_best_effort(
        "application_status_changed",
        {
            "applicant_name": application.applicant_name,
            "application_number": application.application_number,
            "application_id": str(application.id),
            "status": application.status,
            "status_label": label,
            "comments": comments,
        },
        (application.personal_info or {}).get("email"),
    )


async def update_status(
    db: AsyncSession,
    actor: User,
    application_id: UUID,
    new_status: str,
    comments: str | None = None,
) -> LoanApplication:
    application = await get_application(db, actor, application_id)
    if actor.role == UserRole.DSA.value:
        application, previous_status = await dsa_workflow.record_decision(
            db, actor, application, new_status, comments
        )
    elif actor.role == UserRole.ADMIN.value:
        previous_status = application.status
        application.status = new_status
        application.status_updated_by = actor.id
        if comments is not None:
            application.comments = comments
        if new_status == ApplicationStatus.CANCELLED.value and not application.cancelled_at:
            application.cancelled_at = datetime.now(timezone.utc)
        db.add(application)
        if new_status not in dsa_workflow.REVIEWABLE_STATUSES:
            await dsa_workflow.release_open_assignments(db, application.id)
        record_audit_log(
            db,
            actor_id=actor.id,
            action="application.status_update",
            resource_type="loan_application",
            resource_id=str(application.id),
            old_value={"status": previous_status},
            new_value={"status": new_status, "comments": comments},
        )
        await db.commit()
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    await _notify_status_change(db, application, previous_status, comments)
    return await get_application_by_id(db, application.id) or application


async def get_application_documents(db: AsyncSession, user: User, application_id: UUID):
    application = await get_application(db, user, application_id)
    return list(application.documents or [])


async def cancel_application(db: AsyncSession, user: User, application_id: UUID) -> LoanApplication:
    application = await get_application(db, user, application_id)
    if application.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if application.status != ApplicationStatus.PENDING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only pending applications can be cancelled",
        )
    application.status = ApplicationStatus.CANCELLED.value
    application.cancelled_at = datetime.now(timezone.utc)
    db.add(application)
    record_audit_log(
        db,
        actor_id=user.id,
        action="application.cancel",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value={"status": ApplicationStatus.PENDING.value},
        new_value={"status": application.status},
    )
    await db.commit()
    return await get_application_by_id(db, application.id) or application
