from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TicketCategory(str, Enum):
    TECHNICAL = "technical"
    GENERAL = "general"
    BILLING = "billing"
    PROCESS = "process"
    LOAN_INQUIRY = "loan_inquiry"
    DOCUMENT = "document"
    OTHER = "other"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketAttachment(BaseModel):
    file_name: str = Field(max_length=255)
    file_url: str = Field(max_length=2048)
    file_size: int | None = None


class TicketCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    subject: str = Field(min_length=3, max_length=200)
    description: str = Field(min_length=10, max_length=5000)
    category: TicketCategory = TicketCategory.GENERAL
    priority: TicketPriority = TicketPriority.MEDIUM
    application_id: UUID | None = None
    tags: list[str] = Field(default_factory=list, max_length=10)


class TicketUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    ticket_id: UUID
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assigned_to: UUID | None = None
    resolution: str | None = Field(default=None, max_length=5000)
    message: str | None = Field(default=None, max_length=5000)
    is_internal: bool = False
    tags: list[str] | None = None


class TicketResponseCreate(BaseModel):
    message: str = Field(min_length=1, max_length=5000)
    attachments: list[TicketAttachment] = Field(default_factory=list)
    is_internal: bool = False


class TicketResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    author_name: str | None = None
    author_role: str | None = None
    message: str
    is_internal: bool
    attachments: list[dict] = []
    created_at: datetime | None = None


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_number: str
    subject: str
    description: str
    category: str
    priority: str
    status: str
    tags: list[str] = []
    user_id: UUID
    user_name: str | None = None
    user_email: str | None = None
    application_id: UUID | None = None
    assigned_to: UUID | None = None
    assignee_name: str | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    resolved_by: UUID | None = None
    responses: list[TicketResponseOut] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TicketListResponse(BaseModel):
    tickets: list[TicketOut]
    total: int
    page: int
    total_pages: int
