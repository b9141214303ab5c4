from __future__ import annotations

from typing import Any

from pydantic import BaseModel, EmailStr, Field


class EmailSendRequest(BaseModel):
    template_name: str = Field(min_length=1, max_length=100)
    template_data: dict[str, Any] = Field(default_factory=dict)
    recipients: list[EmailStr] = Field(min_length=1, max_length=100)


class EmailRecipientResult(BaseModel):
    email: str
    success: bool
    error: str | None = None


class EmailSummary(BaseModel):
    total: int
    successful: int
    failed: int


class EmailSendResponse(BaseModel):
    results: list[EmailRecipientResult]
    summary: EmailSummary


class EmailTemplateInfo(BaseModel):
    name: str
    display_name: str
    description: str
    required_fields: list[str] = []


class EmailTemplateListResponse(BaseModel):
    templates: list[EmailTemplateInfo]
