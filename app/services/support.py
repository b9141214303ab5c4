from __future__ import annotations

import logging
import math
import secrets
from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.permissions import UserRole
from app.models.loan_application import LoanApplication
from app.models.support_ticket import SupportTicket, TicketResponse
from app.models.user import User
from app.schemas.support import (
    TicketCreate,
    TicketOut,
    TicketResponseCreate,
    TicketResponseOut,
    TicketStatus,
    TicketUpdate,
)
from app.services import notifications
from app.services.audit import record_audit_log
from app.services.email_service import send_best_effort

logger = logging.getLogger(__name__)


def generate_ticket_number(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"TKT{now:%y%m%d}{secrets.randbelow(10000):04d}"


def _is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN.value


def to_ticket_out(ticket: SupportTicket, viewer: User | None = None) -> TicketOut:
    owner = ticket.__dict__.get("user")
    assignee = ticket.__dict__.get("assignee")
    show_internal = viewer is None or _is_admin(viewer)
    responses = []
    for response in ticket.__dict__.get("responses") or []:
        if response.is_internal and not show_internal:
            continue
        author = response.__dict__.get("user")
        responses.append(
            TicketResponseOut.model_validate(response).model_copy(
                update={
                    "author_name": author.full_name if author else None,
                    "author_role": author.role if author else None,
                }
            )
        )
    return TicketOut.model_validate(ticket).model_copy(
        update={
            "user_name": owner.full_name if owner else None,
            "user_email": owner.email if owner else None,
            "assignee_name": assignee.full_name if assignee else None,
            "responses": responses,
        }
    )


def _ticket_options():
    return (
        selectinload(SupportTicket.user),
        selectinload(SupportTicket.assignee),
        selectinload(SupportTicket.responses).selectinload(TicketResponse.user),
    )


async def _load_ticket(db: AsyncSession, ticket_id: UUID) -> SupportTicket | None:
    stmt = (
        select(SupportTicket)
        .options(*_ticket_options())
        .where(SupportTicket.id == ticket_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_ticket(db: AsyncSession, user: User, ticket_id: UUID) -> SupportTicket:
    ticket = await _load_ticket(db, ticket_id)
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    if not _is_admin(user) and ticket.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return ticket


async def create_ticket(db: AsyncSession, user: User, payload: TicketCreate) -> SupportTicket:
    if payload.application_id:
        application = await db.get(LoanApplication, payload.application_id)
        if application is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
        if user.role == UserRole.USER.value and application.user_id != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    ticket = SupportTicket(
        ticket_number=generate_ticket_number(),
        subject=payload.subject.strip(),
        description=payload.description.strip(),
        category=payload.category,
        priority=payload.priority,
        status=TicketStatus.OPEN.value,
        tags=[tag.strip() for tag in payload.tags if tag.strip()],
        user_id=user.id,
        application_id=payload.application_id,
    )
    db.add(ticket)
    await db.flush()
    await notifications.notify_admins(
        db,
        "New Support Ticket",
        f"{ticket.ticket_number}: {ticket.subject}",
        "warning" if ticket.priority in ("high", "urgent") else "info",
        f"/admin/support/{ticket.id}",
    )
    await db.commit()
    logger.info("Support ticket created", extra={"ticket_number": ticket.ticket_number})
    return await _load_ticket(db, ticket.id) or ticket


async def list_tickets(
    db: AsyncSession,
    user: User,
    *,
    status_filter: str | None = None,
    category: str | None = None,
    priority: str | None = None,
    assigned_to: UUID | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[SupportTicket], int, int]:
    filters = []
    if not _is_admin(user):
        filters.append(SupportTicket.user_id == user.id)
    if status_filter and status_filter != "all":
        filters.append(SupportTicket.status == status_filter)
    if category and category != "all":
        filters.append(SupportTicket.category == category)
    if priority and priority != "all":
        filters.append(SupportTicket.priority == priority)
    if assigned_to:
        filters.append(SupportTicket.assigned_to == assigned_to)

    base_stmt = select(SupportTicket).where(*filters)
    total = int((await db.execute(select(func.count()).select_from(base_stmt.subquery()))).scalar_one() or 0)
    stmt = (
        base_stmt.options(selectinload(SupportTicket.user), selectinload(SupportTicket.assignee))
        .order_by(SupportTicket.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return items, total, math.ceil(total / limit) if limit else 0


async def _email_ticket_owner(ticket: SupportTicket, message: str | None) -> None:
    owner = ticket.__dict__.get("user")
    await send_best_effort(
        "ticket_update",
        {
            "ticket_number": ticket.ticket_number,
            "ticket_id": str(ticket.id),
            "subject": ticket.subject,
            "status": ticket.status.replace("_", " "),
            "message": message,
        },
        owner.email if owner else None,
    )


async def update_ticket(db: AsyncSession, user: User, payload: TicketUpdate) -> SupportTicket:
    ticket = await get_ticket(db, user, payload.ticket_id)
    admin_fields = {"status", "priority", "assigned_to", "resolution", "tags"}
    requested = {field for field in admin_fields if getattr(payload, field) is not None}
    if requested and not _is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only administrators can update tickets")

    before = {"status": ticket.status, "priority": ticket.priority, "assigned_to": ticket.assigned_to}
    now = datetime.now(timezone.utc)
    if payload.assigned_to is not None:
        assignee = await db.get(User, payload.assigned_to)
        if assignee is None or assignee.role != UserRole.ADMIN.value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tickets can only be assigned to administrators")
        ticket.assigned_to = assignee.id
        if ticket.status == TicketStatus.OPEN.value and payload.status is None:
            ticket.status = TicketStatus.IN_PROGRESS.value
    if payload.priority is not None:
        ticket.priority = payload.priority
    if payload.tags is not None:
        ticket.tags = payload.tags
    if payload.resolution is not None:
        ticket.resolution = payload.resolution
    if payload.status is not None:
        ticket.status = payload.status
        if payload.status in (TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value):
            ticket.resolved_at = ticket.resolved_at or now
            ticket.resolved_by = ticket.resolved_by or user.id
        else:
            ticket.resolved_at = None
            ticket.resolved_by = None
    if payload.message:
        db.add(
            TicketResponse(
                ticket_id=ticket.id,
                user_id=user.id,
                message=payload.message,
                is_internal=payload.is_internal and _is_admin(user),
                attachments=[],
            )
        )
    ticket.updated_at = now
    db.add(ticket)

    public_reply = bool(payload.message) and not payload.is_internal
    if ticket.user_id != user.id and (requested or public_reply):
        notifications.notify(
            db,
            ticket.user_id,
            f"Ticket {ticket.ticket_number} updated",
            f"Your ticket is now {ticket.status.replace('_', ' ')}.",
            "info",
            f"/support/{ticket.id}",
        )
    record_audit_log(
        db,
        actor_id=user.id,
        action="ticket.update",
        resource_type="support_ticket",
        resource_id=str(ticket.id),
        old_value=before,
        new_value={"status": ticket.status, "priority": ticket.priority, "assigned_to": ticket.assigned_to},
    )
    await db.commit()
    ticket = await _load_ticket(db, ticket.id) or ticket
    if ticket.user_id != user.id and (requested or public_reply):
        await _email_ticket_owner(ticket, payload.message if public_reply else None)
    return ticket


async def add_response(
    db: AsyncSession,
    user: User,
    ticket_id: UUID,
    payload: TicketResponseCreate,
) -> SupportTicket:
    ticket = await get_ticket(db, user, ticket_id)
    if ticket.status == TicketStatus.CLOSED.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Cannot respond to a closed ticket")

    is_internal = payload.is_internal and _is_admin(user)
    db.add(
        TicketResponse(
            ticket_id=ticket.id,
            user_id=user.id,
            message=payload.message,
            is_internal=is_internal,
            attachments=[attachment.model_dump() for attachment in payload.attachments],
        )
    )
    now = datetime.now(timezone.utc)
    if ticket.user_id == user.id and ticket.status == TicketStatus.RESOLVED.value:
        ticket.status = TicketStatus.OPEN.value
        ticket.resolved_at = None
        ticket.resolved_by = None
    ticket.updated_at = now
    db.add(ticket)

    if ticket.user_id == user.id:
        recipients = [ticket.assigned_to] if ticket.assigned_to else []
        for recipient_id in recipients:
            notifications.notify(
                db,
                recipient_id,
                f"New reply on {ticket.ticket_number}",
                payload.message[:120],
                "info",
                f"/admin/support/{ticket.id}",
            )
    elif not is_internal:
        notifications.notify(
            db,
            ticket.user_id,
            f"New reply on {ticket.ticket_number}",
            payload.message[:120],
            "info",
            f"/support/{ticket.id}",
        )
    await db.commit()
    ticket = await _load_ticket(db, ticket.id) or ticket
    if ticket.user_id != user.id and not is_internal:
        await _email_ticket_owner(ticket, payload.message)
    return ticket


async def delete_ticket(db: AsyncSession, user: User, ticket_id: UUID) -> None:
    if not _is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    ticket = await db.get(SupportTicket, ticket_id)
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    record_audit_log(
        db,
        actor_id=user.id,
        action="ticket.delete",
        resource_type="support_ticket",
        resource_id=str(ticket.id),
        old_value={"ticket_number": ticket.ticket_number, "status": ticket.status},
    )
    await db.delete(ticket)
    await db.commit()
