import logging
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import PAYMENT_INITIATE_LIMIT, limiter
from app.core.permissions import PermissionCode
from app.core.settings import settings
from app.db.session import get_db
from app.models import User
from app.schemas.payments import PaymentInitiateRequest, PaymentInitiateResponse, PaymentOut, PaymentVerifyRequest
from app.services import payments as payment_service
from app.services.payment_gateway import PaymentGatewayError

router = APIRouter(tags=["payments"])
logger = logging.getLogger(__name__)


def _frontend_status_url(**params: str) -> str:
    base = settings.frontend_base_url.rstrip("/")
    return f"{base}/payment/status?{urlencode({k: v for k, v in params.items() if v})}"


@router.post("/payment/hdfc/initiate", response_model=PaymentInitiateResponse)
@limiter.limit(PAYMENT_INITIATE_LIMIT)
async def initiate_payment(
    request: Request,
    payload: PaymentInitiateRequest,
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYMENT_INITIATE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentInitiateResponse:
    result = await payment_service.initiate_payment(db, current_user, payload)
    return PaymentInitiateResponse.model_validate(result)


@router.get("/payment/hdfc/initiate", response_model=PaymentOut)
async def get_payment_status(
    payment_id: str | None = Query(default=None),
    application_id: UUID | None = Query(default=None),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    payment = await payment_service.get_payment_status(
        db, current_user, payment_id=payment_id, application_id=application_id
    )
    return payment_service.to_payment_out(payment)


@router.post("/payment/hdfc/response", response_class=RedirectResponse)
async def handle_gateway_response(
    enc_resp: str = Form(..., alias="encResp"),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """Browser-posted gateway callback; the customer is sent back to the front end."""
    try:
        payment = await payment_service.handle_gateway_response(db, enc_resp)
    except PaymentGatewayError as exc:
        logger.warning("Rejected gateway response: %s", exc)
        return RedirectResponse(
            _frontend_status_url(status="error", reason=str(exc)),
            status_code=status.HTTP_303_SEE_OTHER,
        )
    except HTTPException as exc:
        if exc.status_code != status.HTTP_404_NOT_FOUND:
            raise
        logger.warning("Gateway response for unknown order")
        return RedirectResponse(
            _frontend_status_url(status="error", reason="Payment not found"),
            status_code=status.HTTP_303_SEE_OTHER,
        )
    return RedirectResponse(
        _frontend_status_url(
            payment_id=payment.payment_id,
            application_id=str(payment.application_id),
            status=payment.status,
        ),
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.post("/payments/verify", response_model=PaymentOut)
async def verify_payment(
    payload: PaymentVerifyRequest,
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    payment = await payment_service.verify_payment(db, current_user, payload)
    return payment_service.to_payment_out(payment)
