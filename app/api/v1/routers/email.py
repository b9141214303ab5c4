from fastapi import APIRouter, Depends, HTTPException, status

from app.api import deps
from app.core.permissions import PermissionCode
from app.models import User
from app.schemas.email import EmailSendRequest, EmailSendResponse, EmailTemplateInfo, EmailTemplateListResponse
from app.services.email_service import get_email_service, template_catalogue

router = APIRouter(prefix="/email", tags=["email"])

email_admin = deps.require_permission(PermissionCode.EMAIL_SEND)


@router.post("/send", response_model=EmailSendResponse)
async def send_email(
    payload: EmailSendRequest,
    _: User = Depends(email_admin),
) -> EmailSendResponse:
    try:
        result = await get_email_service().send_template(
            payload.template_name,
            payload.template_data,
            [str(recipient) for recipient in payload.recipients],
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return EmailSendResponse.model_validate(result)


@router.get("/send", response_model=EmailTemplateListResponse)
async def list_email_templates(_: User = Depends(email_admin)) -> EmailTemplateListResponse:
    return EmailTemplateListResponse(
        templates=[EmailTemplateInfo(**template) for template in template_catalogue()]
    )
