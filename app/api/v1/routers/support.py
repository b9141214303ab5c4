from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models import User
from app.schemas.support import (
    TicketCreate,
    TicketListResponse,
    TicketOut,
    TicketResponseCreate,
    TicketUpdate,
)
from app.services import support as support_service

router = APIRouter(prefix="/support", tags=["support"])


@router.post("", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreate,
    current_user: User = Depends(deps.require_permission(PermissionCode.TICKET_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> TicketOut:
    ticket = await support_service.create_ticket(db, current_user, payload)
    return support_service.to_ticket_out(ticket, current_user)


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    status_filter: str | None = Query(default=None, alias="status"),
    category: str | None = Query(default=None),
    priority: str | None = Query(default=None),
    assigned_to: UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TicketListResponse:
    items, total, total_pages = await support_service.list_tickets(
        db,
        current_user,
        status_filter=status_filter,
        category=category,
        priority=priority,
        assigned_to=assigned_to,
        page=page,
        limit=limit,
    )
    return TicketListResponse(
        tickets=[support_service.to_ticket_out(item, current_user) for item in items],
        total=total,
        page=page,
        total_pages=total_pages,
    )


@router.put("", response_model=TicketOut)
async def update_ticket(
    payload: TicketUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TicketOut:
    ticket = await support_service.update_ticket(db, current_user, payload)
    return support_service.to_ticket_out(ticket, current_user)


@router.get("/{ticket_id}", response_model=TicketOut)
async def get_ticket(
    ticket_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TicketOut:
    ticket = await support_service.get_ticket(db, current_user, ticket_id)
    return support_service.to_ticket_out(ticket, current_user)


@router.post("/{ticket_id}", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
async def add_ticket_response(
    ticket_id: UUID,
    payload: TicketResponseCreate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TicketOut:
    ticket = await support_service.add_response(db, current_user, ticket_id, payload)
    return support_service.to_ticket_out(ticket, current_user)


@router.delete("/{ticket_id}", status_code=204)
async def delete_ticket(
    ticket_id: UUID,
    current_user: User = Depends(deps.require_permission(PermissionCode.TICKET_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    await support_service.delete_ticket(db, current_user, ticket_id)
    return None
