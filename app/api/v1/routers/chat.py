import asyncio
import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models import User
from app.schemas.chat import (
    ChatCreate,
    ChatListResponse,
    ChatMessageCreate,
    ChatMessageOut,
    ChatMessagesResponse,
    ChatOut,
    UnreadCountResponse,
)
from app.services import chat as chat_service
from app.services import chat_stream

router = APIRouter(prefix="/chat", tags=["chat"])
messages_router = APIRouter(prefix="/messages", tags=["chat"])
logger = logging.getLogger(__name__)

chat_user = deps.require_permission(PermissionCode.CHAT_USE)


@router.post("", response_model=ChatOut, status_code=status.HTTP_201_CREATED)
async def create_chat(
    payload: ChatCreate,
    response: Response,
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
) -> ChatOut:
    chat, created = await chat_service.create_chat(db, current_user, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    return chat_service.to_chat_out(chat)


@router.get("", response_model=ChatListResponse)
async def list_chats(
    user_id: UUID | None = Query(default=None),
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
) -> ChatListResponse:
    chats = await chat_service.list_chats(db, current_user, for_user_id=user_id)
    return ChatListResponse(chats=chats)


@router.get("/{chat_id}/messages", response_model=ChatMessagesResponse)
async def get_messages(
    chat_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    before: datetime | None = Query(default=None),
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
) -> ChatMessagesResponse:
    messages = await chat_service.get_messages(db, current_user, chat_id, limit=limit, before=before)
    return ChatMessagesResponse(
        messages=[chat_service.to_message_out(message, current_user.id) for message in messages]
    )


@router.post("/{chat_id}/messages", response_model=ChatMessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: UUID,
    payload: ChatMessageCreate,
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
) -> ChatMessageOut:
    message = await chat_service.send_message(db, current_user, chat_id, payload)
    return chat_service.to_message_out(message).model_copy(
        update={"sender_name": current_user.full_name, "sender_role": current_user.role, "read": True}
    )


@router.patch("/{chat_id}/read", response_model=UnreadCountResponse)
async def mark_chat_read(
    chat_id: UUID,
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    await chat_service.mark_read(db, current_user, chat_id)
    return UnreadCountResponse(unread_count=await chat_service.unread_count(db, current_user.id))


@router.get("/{chat_id}/stream", summary="Stream new chat messages (SSE)")
async def stream_chat(
    chat_id: UUID,
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
):
    await chat_service.get_chat_for_user(db, current_user, chat_id)
    channel = chat_stream.channel_for_chat(chat_id)
    pubsub = await chat_stream.subscribe(channel)

    async def event_generator():
        try:
            yield ": connected\n\n"
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=15.0)
                if message and message.get("data"):
                    yield "event: message.created\n"
                    yield f"data: {message['data']}\n\n"
                else:
                    yield ": keep-alive\n\n"
                await asyncio.sleep(0)
        finally:
            await chat_stream.unsubscribe(pubsub, channel)

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=headers)


@messages_router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: User = Depends(chat_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await chat_service.unread_count(db, current_user.id))
