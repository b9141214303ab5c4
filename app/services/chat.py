from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.permissions import UserRole
from app.models.chat import Chat, ChatMessage, ChatMessageReceipt, ChatParticipant
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.chat import ChatCreate, ChatMessageCreate, ChatMessageOut, ChatOut, ChatParticipantOut
from app.services import chat_stream, notifications

logger = logging.getLogger(__name__)


def _participant_out(participant: ChatParticipant) -> ChatParticipantOut:
    user = participant.__dict__.get("user")
    return ChatParticipantOut(
        user_id=participant.user_id,
        name=user.full_name if user else "",
        email=user.email if user else None,
        role=participant.role,
    )


def to_message_out(message: ChatMessage, viewer_id: UUID | None = None) -> ChatMessageOut:
    sender = message.__dict__.get("sender")
    read = True
    if viewer_id is not None and message.sender_id != viewer_id:
        read = any(
            receipt.user_id == viewer_id and receipt.read
            for receipt in message.__dict__.get("receipts") or []
        )
    return ChatMessageOut.model_validate(message).model_copy(
        update={
            "sender_name": sender.full_name if sender else None,
            "sender_role": sender.role if sender else None,
            "read": read,
        }
    )


def to_chat_out(
    chat: Chat,
    *,
    last_message: ChatMessage | None = None,
    unread_count: int = 0,
    application_number: str | None = None,
) -> ChatOut:
    return ChatOut(
        id=chat.id,
        application_id=chat.application_id,
        application_number=application_number,
        participants=[_participant_out(p) for p in chat.participants or []],
        last_message=to_message_out(last_message) if last_message else None,
        unread_count=unread_count,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
    )


async def _load_chat(db: AsyncSession, chat_id: UUID) -> Chat | None:
    stmt = (
        select(Chat)
        .options(selectinload(Chat.participants).selectinload(ChatParticipant.user))
        .where(Chat.id == chat_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_chat_for_user(db: AsyncSession, user: User, chat_id: UUID) -> Chat:
    chat = await _load_chat(db, chat_id)
    if chat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    if user.role != UserRole.ADMIN.value and user.id not in chat.participant_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return chat


async def _find_existing(
    db: AsyncSession, application_id: UUID | None, participant_ids: set[UUID], creator_id: UUID
) -> Chat | None:
    stmt = (
        select(Chat)
        .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .options(selectinload(Chat.participants).selectinload(ChatParticipant.user))
        .where(ChatParticipant.user_id == creator_id)
    )
    if application_id is None:
        stmt = stmt.where(Chat.application_id.is_(None))
    else:
        stmt = stmt.where(Chat.application_id == application_id)
    for chat in (await db.execute(stmt)).scalars().unique().all():
        if chat.participant_ids == participant_ids:
            return chat
    return None


async def create_chat(db: AsyncSession, user: User, payload: ChatCreate) -> tuple[Chat, bool]:
    """Open a chat, or return the existing one for the same application and participants."""
    participant_ids = set(payload.participants) | {user.id}
    if len(participant_ids) < 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A chat needs at least two participants")

    if payload.application_id:
        application = await db.get(LoanApplication, payload.application_id)
        if application is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
        if user.role == UserRole.USER.value and application.user_id != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    users = (await db.execute(select(User).where(User.id.in_(participant_ids)))).scalars().all()
    if len(users) != len(participant_ids):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="One or more participants not found")

    existing = await _find_existing(db, payload.application_id, participant_ids, user.id)
    if existing is not None:
        return existing, False

    chat = Chat(application_id=payload.application_id, created_by=user.id)
    db.add(chat)
    await db.flush()
    for member in users:
        db.add(ChatParticipant(chat_id=chat.id, user_id=member.id, role=member.role))
    await db.commit()
    return await _load_chat(db, chat.id) or chat, True


async def unread_counts_by_chat(db: AsyncSession, user_id: UUID) -> dict[UUID, int]:
    stmt = (
        select(ChatMessage.chat_id, func.count())
        .join(ChatMessageReceipt, ChatMessageReceipt.message_id == ChatMessage.id)
        .where(ChatMessageReceipt.user_id == user_id, ChatMessageReceipt.read.is_(False))
        .group_by(ChatMessage.chat_id)
    )
    return {chat_id: int(count) for chat_id, count in (await db.execute(stmt)).all()}


async def list_chats(db: AsyncSession, user: User, *, for_user_id: UUID | None = None) -> list[ChatOut]:
    target_id = for_user_id if for_user_id and user.role == UserRole.ADMIN.value else user.id
    stmt = (
        select(Chat)
        .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .options(selectinload(Chat.participants).selectinload(ChatParticipant.user))
        .where(ChatParticipant.user_id == target_id)
        .order_by(Chat.updated_at.desc())
    )
    chats = list((await db.execute(stmt)).scalars().unique().all())
    if not chats:
        return []
    chat_ids = [chat.id for chat in chats]

    latest = (
        select(ChatMessage.chat_id, func.max(ChatMessage.created_at).label("latest"))
        .where(ChatMessage.chat_id.in_(chat_ids))
        .group_by(ChatMessage.chat_id)
        .subquery()
    )
    last_stmt = (
        select(ChatMessage)
        .options(selectinload(ChatMessage.sender))
        .join(latest, (ChatMessage.chat_id == latest.c.chat_id) & (ChatMessage.created_at == latest.c.latest))
    )
    last_messages = {m.chat_id: m for m in (await db.execute(last_stmt)).scalars().all()}

    application_ids = [chat.application_id for chat in chats if chat.application_id]
    numbers: dict[UUID, str] = {}
    if application_ids:
        rows = await db.execute(
            select(LoanApplication.id, LoanApplication.application_number).where(
                LoanApplication.id.in_(application_ids)
            )
        )
        numbers = {app_id: number for app_id, number in rows.all()}

    unread = await unread_counts_by_chat(db, target_id)
    return [
        to_chat_out(
            chat,
            last_message=last_messages.get(chat.id),
            unread_count=unread.get(chat.id, 0),
            application_number=numbers.get(chat.application_id),
        )
        for chat in chats
    ]


async def get_messages(
    db: AsyncSession,
    user: User,
    chat_id: UUID,
    *,
    limit: int = 100,
    before: datetime | None = None,
) -> list[ChatMessage]:
    await get_chat_for_user(db, user, chat_id)
    stmt = (
        select(ChatMessage)
        .options(selectinload(ChatMessage.sender), selectinload(ChatMessage.receipts))
        .where(ChatMessage.chat_id == chat_id)
    )
    if before:
        stmt = stmt.where(ChatMessage.created_at < before)
    stmt = stmt.order_by(ChatMessage.created_at.desc()).limit(limit)
    messages = list((await db.execute(stmt)).scalars().all())
    messages.reverse()
    return messages


async def send_message(
    db: AsyncSession,
    user: User,
    chat_id: UUID,
    payload: ChatMessageCreate,
) -> ChatMessage:
    chat = await get_chat_for_user(db, user, chat_id)
    if user.id not in chat.participant_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only participants can send messages")

    now = datetime.now(timezone.utc)
    message = ChatMessage(
        chat_id=chat.id,
        sender_id=user.id,
        message=payload.message.strip() or (payload.file_name or ""),
        message_type=payload.message_type,
        file_url=payload.file_url,
        file_name=payload.file_name,
        created_at=now,
    )
    db.add(message)
    await db.flush()
    recipients = [pid for pid in chat.participant_ids if pid != user.id]
    for recipient_id in recipients:
        db.add(ChatMessageReceipt(message_id=message.id, user_id=recipient_id, read=False))
        notifications.notify(
            db,
            recipient_id,
            f"New message from {user.full_name}",
            message.message[:120],
            "info",
            f"/chat/{chat.id}",
        )
    chat.updated_at = now
    db.add(chat)
    await db.commit()
    await db.refresh(message)

    out = to_message_out(message).model_copy(update={"sender_name": user.full_name, "sender_role": user.role})
    await chat_stream.publish_message(chat.id, {"event": "message.created", "message": out.model_dump(mode="json")})
    return message


async def mark_read(db: AsyncSession, user: User, chat_id: UUID) -> int:
    await get_chat_for_user(db, user, chat_id)
    message_ids = select(ChatMessage.id).where(ChatMessage.chat_id == chat_id)
    result = await db.execute(
        update(ChatMessageReceipt)
        .where(
            ChatMessageReceipt.user_id == user.id,
            ChatMessageReceipt.read.is_(False),
            ChatMessageReceipt.message_id.in_(message_ids),
        )
        .values(read=True, read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return int(result.rowcount or 0)


async def unread_count(db: AsyncSession, user_id: UUID) -> int:
    stmt = select(func.count()).select_from(ChatMessageReceipt).where(
        ChatMessageReceipt.user_id == user_id, ChatMessageReceipt.read.is_(False)
    )
    return int((await db.execute(stmt)).scalar() or 0)
