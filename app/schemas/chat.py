from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"


class ChatCreate(BaseModel):
    application_id: UUID | None = None
    participants: list[UUID] = Field(default_factory=list)


class ChatParticipantOut(BaseModel):
    user_id: UUID
    name: str
    email: str | None = None
    role: str


class ChatMessageCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    message: str = Field(default="", max_length=5000)
    message_type: MessageType = MessageType.TEXT
    file_url: str | None = Field(default=None, max_length=2048)
    file_name: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _check_content(self) -> "ChatMessageCreate":
        if self.message_type == MessageType.TEXT.value and not self.message.strip():
            raise ValueError("Message text is required")
        if self.message_type != MessageType.TEXT.value and not self.file_url:
            raise ValueError("file_url is required for file and image messages")
        return self


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    chat_id: UUID
    sender_id: UUID
    sender_name: str | None = None
    sender_role: str | None = None
    message: str
    message_type: str
    file_url: str | None = None
    file_name: str | None = None
    read: bool = False
    created_at: datetime | None = None


class ChatOut(BaseModel):
    id: UUID
    application_id: UUID | None = None
    application_number: str | None = None
    participants: list[ChatParticipantOut]
    last_message: ChatMessageOut | None = None
    unread_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatListResponse(BaseModel):
    chats: list[ChatOut]


class ChatMessagesResponse(BaseModel):
    messages: list[ChatMessageOut]


class UnreadCountResponse(BaseModel):
    unread_count: int
