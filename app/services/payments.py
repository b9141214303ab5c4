from __future__ import annotations

import logging
import math
import secrets
import string
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import Date, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.permissions import UserRole
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.payment import Payment
from app.models.user import User
from app.schemas.payments import (
    DailyRevenue,
    PaymentFilters,
    PaymentInitiateRequest,
    PaymentOut,
    PaymentStatistics,
    PaymentStatus,
    PaymentVerifyRequest,
)
from app.services import notifications
from app.services.audit import record_audit_log
from app.services.email_service import send_best_effort
from app.services.payment_gateway import (
    PaymentGatewayError,
    build_merchant_params,
    decrypt_response,
    encrypt_request,
    parse_gateway_response,
)

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_uppercase + string.digits
ZERO = Decimal("0")


def _random(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_payment_id(now_ms: int | None = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"PAY{now_ms}{_random(6)}"


def generate_order_id(now_ms: int | None = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"ORD{now_ms}{_random(4)}"


def _gateway_urls() -> tuple[str, str]:
    base = settings.public_base_url.rstrip("/")
    redirect_url = settings.hdfc_redirect_url or f"{base}/api/v1/payment/hdfc/response"
    cancel_url = settings.hdfc_cancel_url or redirect_url
    return redirect_url, cancel_url


def _ensure_gateway_configured() -> None:
    if not (settings.hdfc_merchant_id and settings.hdfc_access_code and settings.hdfc_working_key):
        raise PaymentGatewayError("Payment gateway is not configured")


def to_payment_out(payment: Payment) -> PaymentOut:
    application = payment.__dict__.get("application")
    customer = payment.__dict__.get("user")
    return PaymentOut.model_validate(payment).model_copy(
        update={
            "application_number": application.application_number if application else None,
            "customer_name": customer.full_name if customer else None,
            "customer_email": customer.email if customer else None,
            "customer_phone": customer.phone if customer else None,
        }
    )


async def initiate_payment(db: AsyncSession, user: User, payload: PaymentInitiateRequest) -> dict:
    application = await db.get(LoanApplication, payload.application_id)
    if application is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    if application.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if application.service_charges_paid or application.payment_status == "completed":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Service charges already paid")
    expected = Decimal(settings.service_charge_amount)
    if expected > 0 and payload.amount != expected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payment amount; service charge is {expected}",
        )
    _ensure_gateway_configured()

    now_ms = int(time.time() * 1000)
    payment_id = generate_payment_id(now_ms)
    order_id = generate_order_id(now_ms)
    redirect_url, cancel_url = _gateway_urls()
    amount = payload.amount.quantize(Decimal("0.01"))
    params = {
        "merchant_id": settings.hdfc_merchant_id,
        "order_id": order_id,
        "amount": f"{amount:.2f}",
        "currency": payload.currency.upper(),
        "redirect_url": redirect_url,
        "cancel_url": cancel_url,
        "language": "EN",
        "billing_name": user.full_name,
        "billing_email": user.email,
        "billing_tel": user.phone,
        "merchant_param1": str(application.id),
        "merchant_param2": payment_id,
    }
    enc_request = encrypt_request(build_merchant_params(params), settings.hdfc_working_key)

    payment = Payment(
        payment_id=payment_id,
        transaction_ref=order_id,
        application_id=application.id,
        user_id=user.id,
        amount=amount,
        currency=payload.currency.upper(),
        status=PaymentStatus.INITIATED.value,
        gateway="hdfc",
    )
    db.add(payment)
    record_audit_log(
        db,
        actor_id=user.id,
        action="payment.initiate",
        resource_type="payment",
        resource_id=payment_id,
        new_value={"application_id": str(application.id), "amount": amount, "order_id": order_id},
    )
    await db.commit()
    logger.info("Payment initiated", extra={"payment_id": payment_id, "order_id": order_id})
    return {
        "success": True,
        "payment_id": payment_id,
        "transaction_ref": order_id,
        "gateway_data": {
            "enc_request": enc_request,
            "access_code": settings.hdfc_access_code,
            "merchant_id": settings.hdfc_merchant_id,
            "redirect_url": redirect_url,
            "cancel_url": cancel_url,
            "gateway_url": settings.hdfc_gateway_url,
        },
        "message": "Payment initiated successfully",
    }


async def _load_payment(db: AsyncSession, *filters) -> Payment | None:
    stmt = (
        select(Payment)
        .options(selectinload(Payment.application), selectinload(Payment.user))
        .where(*filters)
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def get_payment_status(
    db: AsyncSession,
    user: User,
    *,
    payment_id: str | None = None,
    application_id: UUID | None = None,
) -> Payment:
    if not payment_id and not application_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="payment_id or application_id is required")
    filters = []
    if payment_id:
        filters.append(Payment.payment_id == payment_id)
    if application_id:
        filters.append(Payment.application_id == application_id)
    payment = await _load_payment(db, *filters)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    if user.role != UserRole.ADMIN.value and payment.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return payment


async def _apply_outcome(
    db: AsyncSession,
    payment: Payment,
    new_status: str,
    *,
    actor_id: UUID | None,
    transaction_id: str | None = None,
    payment_method: str | None = None,
    bank_ref_no: str | None = None,
    failure_reason: str | None = None,
    gateway_response: dict | None = None,
) -> Payment:
    old_status = payment.status
    now = datetime.now(timezone.utc)
    payment.status = new_status
    payment.gateway_transaction_id = transaction_id or payment.gateway_transaction_id
    payment.payment_method = payment_method or payment.payment_method
    payment.bank_ref_no = bank_ref_no or payment.bank_ref_no
    if gateway_response is not None:
        payment.gateway_response = gateway_response
    application = payment.__dict__.get("application") or await db.get(LoanApplication, payment.application_id)

    if new_status == PaymentStatus.COMPLETED.value:
        payment.completed_at = now
        payment.failure_reason = None
        application.payment_status = "completed"
        application.service_charges_paid = True
        notifications.notify(
            db,
            payment.user_id,
            "Payment Successful",
            f"Your payment {payment.payment_id} of {payment.currency} {payment.amount} was received.",
            "success",
            f"/applications/{application.id}",
        )
    else:
        payment.failure_reason = failure_reason
        if not application.service_charges_paid:
            application.payment_status = "failed" if new_status == PaymentStatus.FAILED.value else "pending"
        notifications.notify(
            db,
            payment.user_id,
            "Payment Failed" if new_status == PaymentStatus.FAILED.value else "Payment Cancelled",
            failure_reason or f"Your payment {payment.payment_id} was not completed.",
            "error" if new_status == PaymentStatus.FAILED.value else "warning",
            f"/applications/{application.id}",
        )
    db.add(payment)
    db.add(application)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="payment.status_update",
        resource_type="payment",
        resource_id=payment.payment_id,
        old_value={"status": old_status},
        new_value={"status": new_status, "transaction_id": transaction_id, "failure_reason": failure_reason},
    )
    await db.commit()

    if new_status == PaymentStatus.COMPLETED.value:
        customer = payment.__dict__.get("user") or await db.get(User, payment.user_id)
        await send_best_effort(
            "payment_receipt",
            {
                "customer_name": customer.full_name if customer else "",
                "payment_id": payment.payment_id,
                "application_number": application.application_number,
                "amount": payment.amount,
                "currency": payment.currency,
                "transaction_id": payment.gateway_transaction_id or "",
                "completed_at": now.strftime("%d %b %Y %H:%M"),
            },
            customer.email if customer else None,
        )
    return payment


def _gateway_status(order_status: str | None) -> str:
    normalized = (order_status or "").strip().lower()
    if normalized == "success":
        return PaymentStatus.COMPLETED.value
    if normalized == "aborted":
        return PaymentStatus.CANCELLED.value
    return PaymentStatus.FAILED.value


async def handle_gateway_response(db: AsyncSession, enc_resp: str) -> Payment:
    _ensure_gateway_configured()
    data = parse_gateway_response(decrypt_response(enc_resp, settings.hdfc_working_key))
    order_id = data.get("order_id")
    if not order_id:
        raise PaymentGatewayError("Gateway response is missing order_id")
    payment = await _load_payment(db, Payment.transaction_ref == order_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    if payment.status == PaymentStatus.COMPLETED.value:
        return payment

    new_status = _gateway_status(data.get("order_status"))
    if new_status == PaymentStatus.COMPLETED.value and data.get("amount"):
        try:
            paid = Decimal(data["amount"])
        except ArithmeticError:
            paid = None
        if paid is not None and paid != payment.amount:
            new_status = PaymentStatus.FAILED.value
            data["failure_message"] = "Amount mismatch"
    logger.info(
        "Gateway response received",
        extra={"payment_id": payment.payment_id, "order_status": data.get("order_status")},
    )
    return await _apply_outcome(
        db,
        payment,
        new_status,
        actor_id=None,
        transaction_id=data.get("tracking_id"),
        payment_method=data.get("payment_mode"),
        bank_ref_no=data.get("bank_ref_no"),
        failure_reason=data.get("failure_message") or data.get("status_message") or None,
        gateway_response=data,
    )


async def verify_payment(db: AsyncSession, admin: User, payload: PaymentVerifyRequest) -> Payment:
    payment = await _load_payment(db, Payment.payment_id == payload.payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    if payment.status == PaymentStatus.COMPLETED.value and payload.status == PaymentStatus.COMPLETED.value:
        return payment
    if payment.status == PaymentStatus.COMPLETED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A completed payment cannot be changed",
        )
    return await _apply_outcome(
        db,
        payment,
        payload.status,
        actor_id=admin.id,
        transaction_id=payload.transaction_id,
        payment_method=payload.payment_method,
        failure_reason=payload.notes if payload.status != PaymentStatus.COMPLETED.value else None,
    )


def _payment_filters(filters: PaymentFilters) -> list:
    conditions = []
    if filters.status and filters.status != "all":
        conditions.append(Payment.status == filters.status)
    if filters.payment_method and filters.payment_method != "all":
        conditions.append(Payment.payment_method == filters.payment_method)
    if filters.date_from:
        conditions.append(Payment.created_at >= datetime.combine(filters.date_from, dt_time.min, timezone.utc))
    if filters.date_to:
        conditions.append(
            Payment.created_at < datetime.combine(filters.date_to + timedelta(days=1), dt_time.min, timezone.utc)
        )
    if filters.search and filters.search.strip():
        term = f"%{filters.search.strip()}%"
        conditions.append(
            or_(
                Payment.payment_id.ilike(term),
                Payment.transaction_ref.ilike(term),
                Payment.gateway_transaction_id.ilike(term),
                LoanApplication.application_number.ilike(term),
                User.first_name.ilike(term),
                User.last_name.ilike(term),
                User.email.ilike(term),
                User.phone.ilike(term),
            )
        )
    return conditions


def _filtered_stmt(filters: PaymentFilters):
    return (
        select(Payment)
        .join(LoanApplication, LoanApplication.id == Payment.application_id)
        .join(User, User.id == Payment.user_id)
        .where(*_payment_filters(filters))
    )


async def list_payments(
    db: AsyncSession,
    filters: PaymentFilters,
    *,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Payment], dict]:
    base_stmt = _filtered_stmt(filters)
    total = int((await db.execute(select(func.count()).select_from(base_stmt.subquery()))).scalar_one() or 0)
    stmt = (
        base_stmt.options(selectinload(Payment.application), selectinload(Payment.user))
        .order_by(Payment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list((await db.execute(stmt)).scalars().all())
    total_pages = math.ceil(total / limit) if limit else 0
    pagination = {
        "current_page": page,
        "total_pages": total_pages,
        "total_count": total,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
    return items, pagination


async def all_filtered_payments(db: AsyncSession, filters: PaymentFilters) -> list[Payment]:
    stmt = (
        _filtered_stmt(filters)
        .options(selectinload(Payment.application), selectinload(Payment.user))
        .order_by(Payment.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


def format_success_rate(completed: int, total: int) -> str:
    return f"{(completed / total * 100) if total else 0:.2f}"


async def payment_statistics(db: AsyncSession, now: datetime | None = None) -> PaymentStatistics:
    now = now or datetime.now(timezone.utc)
    counts = dict(
        (await db.execute(select(Payment.status, func.count()).group_by(Payment.status))).all()
    )
    total = sum(int(count) for count in counts.values())
    completed = int(counts.get(PaymentStatus.COMPLETED.value, 0))
    completed_filter = Payment.status == PaymentStatus.COMPLETED.value

    async def _revenue(*conditions) -> Decimal:
        stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(completed_filter, *conditions)
        return Decimal((await db.execute(stmt)).scalar() or 0)

    today_start = datetime.combine(now.date(), dt_time.min, timezone.utc)
    month_start = today_start.replace(day=1)
    since = today_start - timedelta(days=29)

    method_rows = await db.execute(
        select(Payment.payment_method, func.count()).where(completed_filter).group_by(Payment.payment_method)
    )
    day = cast(Payment.completed_at, Date)
    daily_rows = await db.execute(
        select(day, func.coalesce(func.sum(Payment.amount), 0), func.count())
        .where(completed_filter, Payment.completed_at >= since)
        .group_by(day)
        .order_by(day)
    )
    return PaymentStatistics(
        total_payments=total,
        completed_payments=completed,
        failed_payments=int(counts.get(PaymentStatus.FAILED.value, 0)),
        pending_payments=int(counts.get(PaymentStatus.PENDING.value, 0))
        + int(counts.get(PaymentStatus.INITIATED.value, 0)),
        total_revenue=await _revenue(),
        today_revenue=await _revenue(Payment.completed_at >= today_start),
        monthly_revenue=await _revenue(Payment.completed_at >= month_start),
        success_rate=format_success_rate(completed, total),
        payment_method_stats={(method or "unknown"): int(count) for method, count in method_rows.all()},
        daily_revenue=[
            DailyRevenue(date=row_day if isinstance(row_day, date) else date.fromisoformat(str(row_day)),
                         revenue=Decimal(revenue or 0), count=int(count))
            for row_day, revenue, count in daily_rows.all()
        ],
    )
