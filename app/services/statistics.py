from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import Date, and_, case, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import UserRole
from app.models.application_review import ApplicationReview
from app.models.loan_application import LoanApplication
from app.models.support_ticket import SupportTicket
from app.models.user import User
from app.schemas.statistics import (
    AdminStatistics,
    AmountBucket,
    AnalyticsOverview,
    AnalyticsPerformance,
    AnalyticsResponse,
    AnalyticsTrends,
    ApplicantStatistics,
    DsaPerformance,
    DsaStatistics,
    RecentApplication,
    TimeRange,
    TrendPoint,
)
from app.services import dsa_workflow, notifications

LAKH = 100_000

# Upper bounds are exclusive; the final bucket is open-ended.
AMOUNT_BUCKETS: list[tuple[str, int | None]] = [
    ("<5L", 5 * LAKH),
    ("5-10L", 10 * LAKH),
    ("10-20L", 20 * LAKH),
    ("20-50L", 50 * LAKH),
    (">50L", None),
]

RECENT_APPLICATIONS_LIMIT = 10


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


def _money(value) -> Decimal:
    return _as_decimal(value).quantize(Decimal("0.01"))


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def bucket_for_amount(amount) -> str:
    amount = _as_decimal(amount)
    for label, upper in AMOUNT_BUCKETS:
        if upper is None or amount < upper:
            return label
    return AMOUNT_BUCKETS[-1][0]


async def _status_counts(db: AsyncSession, *conditions) -> dict[str, int]:
    stmt = select(LoanApplication.status, func.count()).where(*conditions).group_by(LoanApplication.status)
    return {row[0]: int(row[1]) for row in (await db.execute(stmt)).all()}


async def _count(db: AsyncSession, model, *conditions) -> int:
    stmt = select(func.count()).select_from(model).where(*conditions)
    return int((await db.execute(stmt)).scalar_one() or 0)


async def admin_statistics(db: AsyncSession) -> AdminStatistics:
    role_rows = (await db.execute(select(User.role, func.count()).group_by(User.role))).all()
    role_counts = {row[0]: int(row[1]) for row in role_rows}
    status_counts = await _status_counts(db)
    total_applications = sum(status_counts.values())
    approved = status_counts.get("approved", 0)
    rejected = status_counts.get("rejected", 0)

    amount_sum, amount_avg = (
        await db.execute(
            select(
                func.coalesce(func.sum(LoanApplication.loan_amount), 0),
                func.coalesce(func.avg(LoanApplication.loan_amount), 0),
            )
        )
    ).first()

    return AdminStatistics(
        total_users=sum(role_counts.values()),
        total_applicants=role_counts.get(UserRole.USER.value, 0),
        total_dsas=role_counts.get(UserRole.DSA.value, 0),
        active_dsas=await _count(
            db, User, User.role == UserRole.DSA.value, User.is_active.is_(True), User.is_verified.is_(True)
        ),
        pending_dsa_verifications=await _count(
            db, User, User.role == UserRole.DSA.value, User.is_verified.is_(False)
        ),
        total_applications=total_applications,
        pending_applications=status_counts.get("pending", 0),
        under_review_applications=status_counts.get("under_review", 0)
        + status_counts.get("partially_approved", 0),
        approved_applications=approved,
        rejected_applications=rejected,
        total_tickets=await _count(db, SupportTicket),
        open_tickets=await _count(db, SupportTicket, SupportTicket.status.in_(["open", "in_progress"])),
        total_loan_amount=_money(amount_sum),
        average_loan_amount=_money(amount_avg),
        completion_rate=_rate(approved + rejected, total_applications),
    )


async def applicant_statistics(db: AsyncSession, user: User) -> ApplicantStatistics:
    status_counts = await _status_counts(db, LoanApplication.user_id == user.id)
    approved_amount = (
        await db.execute(
            select(func.coalesce(func.sum(LoanApplication.loan_amount), 0)).where(
                LoanApplication.user_id == user.id,
                LoanApplication.status == "approved",
            )
        )
    ).scalar_one()
    return ApplicantStatistics(
        total_applications=sum(status_counts.values()),
        pending_applications=status_counts.get("pending", 0),
        under_review_applications=status_counts.get("under_review", 0)
        + status_counts.get("partially_approved", 0),
        approved_applications=status_counts.get("approved", 0),
        rejected_applications=status_counts.get("rejected", 0),
        approved_amount=_money(approved_amount),
        unread_notifications=await notifications.count_unread(db, user.id),
    )


async def get_statistics(
    db: AsyncSession, user: User, role: str | None = None
) -> AdminStatistics | DsaStatistics | ApplicantStatistics:
    """Role-shaped dashboard numbers; non-admins may only ask for their own role."""
    requested = role or user.role
    if requested != user.role and user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot view statistics for another role")
    if requested == UserRole.ADMIN.value:
        return await admin_statistics(db)
    if requested == UserRole.DSA.value:
        if user.role != UserRole.DSA.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="DSA statistics are only available to DSA accounts",
            )
        return await dsa_workflow.dsa_statistics(db, user)
    if requested == UserRole.USER.value:
        return await applicant_statistics(db, user)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown role: {requested}")


def _window_start(time_range: TimeRange, now: datetime) -> datetime:
    start_day = now.date() - timedelta(days=time_range.days - 1)
    return datetime.combine(start_day, time.min, tzinfo=timezone.utc)


async def _overview(db: AsyncSession, since: datetime) -> AnalyticsOverview:
    in_window = LoanApplication.created_at >= since
    total, amount_sum, amount_avg, approved = (
        await db.execute(
            select(
                func.count(LoanApplication.id),
                func.coalesce(func.sum(LoanApplication.loan_amount), 0),
                func.coalesce(func.avg(LoanApplication.loan_amount), 0),
                func.count(LoanApplication.id).filter(LoanApplication.status == "approved"),
            ).where(in_window)
        )
    ).first()
    total = int(total or 0)
    return AnalyticsOverview(
        total_applications=total,
        total_users=await _count(db, User, User.created_at >= since),
        total_loan_amount=_money(amount_sum),
        approval_rate=_rate(int(approved or 0), total),
        avg_loan_amount=_money(amount_avg),
    )


def _fill_trend(counts: dict[date, int], since: datetime, now: datetime) -> list[TrendPoint]:
    points: list[TrendPoint] = []
    day = since.date()
    while day <= now.date():
        points.append(TrendPoint(date=day, count=counts.get(day, 0)))
        day += timedelta(days=1)
    return points


async def _trends(db: AsyncSession, since: datetime, now: datetime) -> AnalyticsTrends:
    in_window = LoanApplication.created_at >= since
    day = cast(LoanApplication.created_at, Date)
    trend_rows = (
        await db.execute(select(day, func.count()).where(in_window).group_by(day).order_by(day))
    ).all()
    trend_counts = {
        (row[0] if isinstance(row[0], date) else date.fromisoformat(str(row[0]))): int(row[1])
        for row in trend_rows
    }

    whens = []
    lower = 0
    for label, upper in AMOUNT_BUCKETS[:-1]:
        whens.append(
            (and_(LoanApplication.loan_amount >= lower, LoanApplication.loan_amount < upper), label)
        )
        lower = upper
    bucket = case(*whens, else_=AMOUNT_BUCKETS[-1][0])
    bucket_rows = (await db.execute(select(bucket, func.count()).where(in_window).group_by(bucket))).all()
    bucket_counts = {row[0]: int(row[1]) for row in bucket_rows}

    return AnalyticsTrends(
        application_trends=_fill_trend(trend_counts, since, now),
        status_distribution=await _status_counts(db, in_window),
        loan_amount_distribution=[
            AmountBucket(range=label, count=bucket_counts.get(label, 0)) for label, _ in AMOUNT_BUCKETS
        ],
    )


async def _dsa_performance(db: AsyncSession, since: datetime) -> list[DsaPerformance]:
    decided_since = ApplicationReview.assigned_at >= since
    stmt = (
        select(
            User,
            func.count(ApplicationReview.id).filter(ApplicationReview.status.in_(["approved", "rejected"])),
            func.count(ApplicationReview.id).filter(ApplicationReview.status == "approved"),
            func.count(ApplicationReview.id).filter(ApplicationReview.status == "rejected"),
            func.count(ApplicationReview.id).filter(ApplicationReview.status == "missed"),
        )
        .outerjoin(ApplicationReview, and_(ApplicationReview.dsa_id == User.id, decided_since))
        .where(User.role == UserRole.DSA.value)
        .group_by(User.id)
        .order_by(User.first_name, User.last_name)
    )
    performance: list[DsaPerformance] = []
    for dsa, reviews, approvals, rejections, missed in (await db.execute(stmt)).all():
        performance.append(
            DsaPerformance(
                dsa_id=dsa.id,
                dsa_code=dsa.dsa_id,
                name=dsa.full_name,
                bank_name=dsa.bank_name,
                reviews=int(reviews or 0),
                approvals=int(approvals or 0),
                rejections=int(rejections or 0),
                missed=int(missed or 0),
                deadline_compliance=float(dsa.deadline_compliance or 0),
            )
        )
    return performance


async def _recent_applications(db: AsyncSession) -> list[RecentApplication]:
    stmt = (
        select(LoanApplication)
        .order_by(LoanApplication.created_at.desc())
        .limit(RECENT_APPLICATIONS_LIMIT)
    )
    recent: list[RecentApplication] = []
    for application in (await db.execute(stmt)).scalars().all():
        personal = application.personal_info or {}
        recent.append(
            RecentApplication(
                id=application.id,
                application_number=application.application_number,
                applicant_name=f"{personal.get('first_name', '')} {personal.get('last_name', '')}".strip(),
                loan_amount=_money(application.loan_amount),
                status=application.status,
                created_at=application.created_at,
            )
        )
    return recent


async def get_analytics(
    db: AsyncSession,
    time_range: TimeRange = TimeRange.LAST_30_DAYS,
    now: datetime | None = None,
) -> AnalyticsResponse:
    now = now or datetime.now(timezone.utc)
    time_range = TimeRange(time_range)
    since = _window_start(time_range, now)
    return AnalyticsResponse(
        overview=await _overview(db, since),
        trends=await _trends(db, since, now),
        performance=AnalyticsPerformance(
            dsa_performance=await _dsa_performance(db, since),
            recent_applications=await _recent_applications(db),
        ),
        time_range=time_range,
        generated_at=now,
    )
