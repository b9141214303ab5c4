"""DSA review workflow: deadlines, one-at-a-time assignment and decision aggregation."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.settings import settings
from app.models.application_review import DECIDED_STATUSES, ApplicationReview
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.applications import ApplicationStatus, DeadlineInfo, DeadlineLevel
from app.schemas.statistics import DsaStatistics
from app.services.audit import record_audit_log

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = (
    ApplicationStatus.PENDING.value,
    ApplicationStatus.UNDER_REVIEW.value,
    ApplicationStatus.PARTIALLY_APPROVED.value,
)
# DSA decisions settle an application as approved or rejected, but reviewers who
# still hold an assignment on it may decide it afterwards.
OPEN_TO_ASSIGNED = (*REVIEWABLE_STATUSES, *DECIDED_STATUSES)
DECISIONS = (
    ApplicationStatus.APPROVED.value,
    ApplicationStatus.REJECTED.value,
    ApplicationStatus.UNDER_REVIEW.value,
)
DEFAULT_DEADLINE_HOURS = 24


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def effective_deadline(application: LoanApplication) -> datetime:
    if application.review_deadline is not None:
        return _aware(application.review_deadline)
    created_at = _aware(application.created_at or _now())
    return created_at + timedelta(hours=DEFAULT_DEADLINE_HOURS)


def hours_remaining(deadline: datetime, now: datetime | None = None) -> int:
    now = now or _now()
    return math.ceil((_aware(deadline) - now).total_seconds() / 3600)


def deadline_level(hours: int) -> DeadlineLevel:
    if hours <= 0:
        return DeadlineLevel.EXPIRED
    if hours <= settings.critical_threshold_hours:
        return DeadlineLevel.CRITICAL
    if hours <= settings.urgent_threshold_hours:
        return DeadlineLevel.URGENT
    return DeadlineLevel.NORMAL


def deadline_info(application: LoanApplication, now: datetime | None = None) -> DeadlineInfo:
    deadline = effective_deadline(application)
    hours = hours_remaining(deadline, now)
    level = deadline_level(hours)
    return DeadlineInfo(
        review_deadline=deadline,
        time_remaining_hours=max(hours, 0),
        level=level,
        is_urgent=level in (DeadlineLevel.CRITICAL, DeadlineLevel.URGENT),
        is_expired=level == DeadlineLevel.EXPIRED,
    )


def is_expired(application: LoanApplication, now: datetime | None = None) -> bool:
    return hours_remaining(effective_deadline(application), now) <= 0


def aggregate_status(decisions: Iterable[str]) -> str | None:
    """Fold individual DSA decisions into the application's status.

    No decisions leaves the status unchanged (``None``); unanimous decisions carry
    through and a split becomes ``partially_approved``.
    """
    decided = {decision for decision in decisions if decision in DECIDED_STATUSES}
    if not decided:
        return None
    if decided == {ApplicationStatus.APPROVED.value}:
        return ApplicationStatus.APPROVED.value
    if decided == {ApplicationStatus.REJECTED.value}:
        return ApplicationStatus.REJECTED.value
    return ApplicationStatus.PARTIALLY_APPROVED.value


def deadline_expr():
    return func.coalesce(
        LoanApplication.review_deadline,
        LoanApplication.created_at + timedelta(hours=DEFAULT_DEADLINE_HOURS),
    )


def _available_for_dsa(dsa_id: UUID, now: datetime):
    already_reviewed = exists().where(
        and_(ApplicationReview.application_id == LoanApplication.id, ApplicationReview.dsa_id == dsa_id)
    )
    return and_(
        LoanApplication.status.in_(REVIEWABLE_STATUSES),
        ~already_reviewed,
        deadline_expr() > now,
    )


async def sweep_missed_deadlines(
    db: AsyncSession,
    now: datetime | None = None,
    *,
    dsa_id: UUID | None = None,
) -> int:
    """Mark overdue assignments as missed and charge them to the DSA."""
    now = now or _now()
    stmt = select(ApplicationReview).where(
        ApplicationReview.status == "assigned",
        ApplicationReview.deadline_at.is_not(None),
        ApplicationReview.deadline_at <= now,
    )
    if dsa_id is not None:
        stmt = stmt.where(ApplicationReview.dsa_id == dsa_id)
    reviews = list((await db.execute(stmt)).scalars().all())
    if not reviews:
        return 0

    missed_by_dsa: dict[UUID, int] = {}
    for review in reviews:
        review.status = "missed"
        db.add(review)
        missed_by_dsa[review.dsa_id] = missed_by_dsa.get(review.dsa_id, 0) + 1
    for missed_dsa_id, count in missed_by_dsa.items():
        await db.execute(
            update(User)
            .where(User.id == missed_dsa_id)
            .values(missed_deadlines=User.missed_deadlines + count)
        )
    await db.flush()
    for missed_dsa_id in missed_by_dsa:
        await refresh_deadline_compliance(db, missed_dsa_id)
    await db.commit()
    logger.info("Swept missed review deadlines", extra={"missed": len(reviews)})
    return len(reviews)


async def release_open_assignments(
    db: AsyncSession,
    application_id: UUID,
    now: datetime | None = None,
) -> int:
    """Release every ``assigned`` review on an application. The caller commits."""
    result = await db.execute(
        update(ApplicationReview)
        .where(ApplicationReview.application_id == application_id, ApplicationReview.status == "assigned")
        .values(status="released", decided_at=now or _now())
    )
    return result.rowcount or 0


async def get_active_assignment(db: AsyncSession, dsa_id: UUID) -> ApplicationReview | None:
    stmt = (
        select(ApplicationReview)
        .options(selectinload(ApplicationReview.application))
        .where(ApplicationReview.dsa_id == dsa_id, ApplicationReview.status == "assigned")
    )
    review = (await db.execute(stmt)).scalar_one_or_none()
    application = review.application if review is not None else None
    if application is not None and application.status not in OPEN_TO_ASSIGNED:
        review.status = "released"
        review.decided_at = _now()
        db.add(review)
        await db.commit()
        logger.info(
            "Released assignment on closed application",
            extra={"application_id": str(application.id), "dsa_id": str(dsa_id)},
        )
        return None
    return review


async def count_available(db: AsyncSession, dsa_id: UUID, now: datetime | None = None) -> int:
    stmt = select(func.count()).select_from(LoanApplication).where(_available_for_dsa(dsa_id, now or _now()))
    return int((await db.execute(stmt)).scalar() or 0)


async def _pick_next(db: AsyncSession, dsa_id: UUID, now: datetime) -> LoanApplication | None:
    stmt = (
        select(LoanApplication)
        .where(_available_for_dsa(dsa_id, now))
        .order_by(deadline_expr().asc(), LoanApplication.created_at.asc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def assign(
    db: AsyncSession,
    dsa: User,
    application: LoanApplication,
    now: datetime | None = None,
) -> ApplicationReview:
    now = now or _now()
    if is_expired(application, now):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Deadline Missed")
    review = ApplicationReview(
        application_id=application.id,
        dsa_id=dsa.id,
        status="assigned",
        assigned_at=now,
        deadline_at=effective_deadline(application),
    )
    db.add(review)
    if application.status == ApplicationStatus.PENDING.value:
        application.status = ApplicationStatus.UNDER_REVIEW.value
        db.add(application)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Application is already assigned or reviewed by this DSA",
        ) from exc
    await db.refresh(review)
    await db.refresh(application)
    logger.info(
        "Assigned application to DSA",
        extra={"application_id": str(application.id), "dsa_id": str(dsa.id)},
    )
    return review


async def get_next_application(db: AsyncSession, dsa: User, now: datetime | None = None) -> dict:
    now = now or _now()
    await sweep_missed_deadlines(db, now, dsa_id=dsa.id)

    current = await get_active_assignment(db, dsa.id)
    application = current.application if current else None
    message = "Continue reviewing your current application"
    if application is None:
        application = await _pick_next(db, dsa.id, now)
        if application is None:
            return {
                "application": None,
                "message": "All applications have been reviewed",
                "time_remaining_hours": None,
                "is_urgent": False,
                "has_completed_all": True,
                "pending_applications": 0,
            }
        await assign(db, dsa, application, now)
        message = "New application assigned"

    info = deadline_info(application, now)
    return {
        "application": application,
        "message": message,
        "time_remaining_hours": info.time_remaining_hours,
        "is_urgent": info.is_urgent,
        "has_completed_all": False,
        "pending_applications": await count_available(db, dsa.id, now),
    }


async def advance(
    db: AsyncSession,
    dsa: User,
    *,
    skip_to_next: bool,
    now: datetime | None = None,
) -> dict:
    now = now or _now()
    current = await get_active_assignment(db, dsa.id)
    if current is not None:
        if not skip_to_next:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Submit a decision on the current application or skip it first",
            )
        current.status = "skipped"
        current.decided_at = now
        db.add(current)
        await db.commit()
    return await get_next_application(db, dsa, now)


async def _review_for(db: AsyncSession, application_id: UUID, dsa_id: UUID) -> ApplicationReview | None:
    stmt = select(ApplicationReview).where(
        ApplicationReview.application_id == application_id,
        ApplicationReview.dsa_id == dsa_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def record_decision(
    db: AsyncSession,
    dsa: User,
    application: LoanApplication,
    decision: str,
    comments: str | None = None,
    now: datetime | None = None,
) -> tuple[LoanApplication, str]:
    """Record a DSA's decision and re-derive the application status.

    Returns the application and its status before the decision.
    """
    now = now or _now()
    previous_status = application.status
    if decision not in DECISIONS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    review = await _review_for(db, application.id, dsa.id)
    holds_assignment = review is not None and review.status == "assigned"
    reviewable = application.status in REVIEWABLE_STATUSES or (
        holds_assignment and application.status in OPEN_TO_ASSIGNED
    )
    if not reviewable:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Application is {application.status} and can no longer be reviewed",
        )
    if is_expired(application, now):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Deadline Missed")

    if review is None:
        active = await get_active_assignment(db, dsa.id)
        if active is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Finish your current application before reviewing another",
            )
        review = await assign(db, dsa, application, now)
    elif review.status != "assigned":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You have already reviewed this application",
        )

    if decision == ApplicationStatus.UNDER_REVIEW.value:
        return application, previous_status

    review.status = decision
    review.comments = comments
    review.decided_at = now
    db.add(review)
    await db.flush()

    decisions = (
        await db.execute(
            select(ApplicationReview.status).where(ApplicationReview.application_id == application.id)
        )
    ).scalars().all()
    new_status = aggregate_status(decisions)
    if new_status and new_status != application.status:
        application.status = new_status
    application.status_updated_by = dsa.id
    if comments:
        application.comments = comments
    db.add(application)
    await refresh_deadline_compliance(db, dsa.id)
    record_audit_log(
        db,
        actor_id=dsa.id,
        action="application.review",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value={"status": previous_status},
        new_value={"status": application.status, "decision": decision, "comments": comments},
    )
    await db.commit()
    await db.refresh(application)
    return application, previous_status


async def refresh_deadline_compliance(db: AsyncSession, dsa_id: UUID) -> float:
    """Percentage of finished reviews that were decided before their deadline."""
    reviews = (
        await db.execute(
            select(ApplicationReview).where(
                ApplicationReview.dsa_id == dsa_id,
                ApplicationReview.status.in_((*DECIDED_STATUSES, "missed")),
            )
        )
    ).scalars().all()
    compliance = compute_compliance(reviews)
    await db.execute(update(User).where(User.id == dsa_id).values(deadline_compliance=compliance))
    return compliance


def compute_compliance(reviews: Iterable[ApplicationReview]) -> float:
    finished = [r for r in reviews if r.status in DECIDED_STATUSES or r.status == "missed"]
    if not finished:
        return 100.0
    on_time = sum(1 for review in finished if review.decided_on_time)
    return round(on_time / len(finished) * 100, 2)


async def dsa_statistics(db: AsyncSession, dsa: User, now: datetime | None = None) -> DsaStatistics:
    now = now or _now()
    reviews = list(
        (await db.execute(select(ApplicationReview).where(ApplicationReview.dsa_id == dsa.id))).scalars().all()
    )
    by_status: dict[str, int] = {}
    for review in reviews:
        by_status[review.status] = by_status.get(review.status, 0) + 1

    approved = by_status.get("approved", 0)
    rejected = by_status.get("rejected", 0)
    decided = approved + rejected
    today = now.date()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    missed_today = sum(
        1
        for review in reviews
        if review.status == "missed" and review.deadline_at and _aware(review.deadline_at).date() == today
    )
    processing_hours = [
        (_aware(review.decided_at) - _aware(review.assigned_at)).total_seconds() / 3600
        for review in reviews
        if review.status in DECIDED_STATUSES and review.decided_at and review.assigned_at
    ]
    monthly_approved = sum(
        1
        for review in reviews
        if review.status == "approved" and review.decided_at and _aware(review.decided_at) >= month_start
    )
    per_approval = Decimal(settings.commission_per_approval)

    return DsaStatistics(
        dsa_id=dsa.dsa_id,
        total_assigned=len(reviews),
        pending_review=by_status.get("assigned", 0),
        approved=approved,
        rejected=rejected,
        skipped=by_status.get("skipped", 0),
        missed_deadlines=by_status.get("missed", 0),
        missed_deadlines_today=missed_today,
        success_rate=round(approved / decided * 100, 2) if decided else 0.0,
        deadline_compliance=compute_compliance(reviews),
        average_processing_hours=round(sum(processing_hours) / len(processing_hours), 2)
        if processing_hours
        else 0.0,
        available_applications=await count_available(db, dsa.id, now),
        total_commission=per_approval * approved,
        monthly_commission=per_approval * monthly_approved,
    )
