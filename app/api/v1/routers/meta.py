from fastapi import APIRouter

from app.schemas.applications import ApplicationPriority, ApplicationStatus
from app.schemas.common import Bank
from app.schemas.support import TicketCategory, TicketPriority, TicketStatus
from app.services.applications import PROGRESS_BY_STATUS, STATUS_LABELS
from app.services.uploads import CHAT_RULE, DOCUMENT_RULE, KYC_RULE

router = APIRouter(prefix="/meta", tags=["meta"])


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


@router.get("/banks", summary="Banks a DSA can be registered with")
async def list_banks() -> dict:
    return {"banks": _values(Bank)}


@router.get("/application-options", summary="Application statuses, priorities and progress")
async def application_options() -> dict:
    return {
        "statuses": [
            {
                "value": value,
                "label": STATUS_LABELS.get(value, value),
                "progress": PROGRESS_BY_STATUS.get(value, 0),
            }
            for value in _values(ApplicationStatus)
        ],
        "priorities": _values(ApplicationPriority),
    }


@router.get("/ticket-options", summary="Support ticket categories, priorities and statuses")
async def ticket_options() -> dict:
    return {
        "categories": _values(TicketCategory),
        "priorities": _values(TicketPriority),
        "statuses": _values(TicketStatus),
    }


@router.get("/upload-rules", summary="Upload size limits and accepted MIME types")
async def upload_rules() -> dict:
    return {
        "rules": [
            {
                "name": rule.name,
                "max_size_bytes": rule.max_size_bytes,
                "allowed_mime_types": sorted(rule.allowed_mime_types),
            }
            for rule in (DOCUMENT_RULE, CHAT_RULE, KYC_RULE)
        ]
    }
