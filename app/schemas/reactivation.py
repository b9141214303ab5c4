from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReactivationRequestCreate(BaseModel):
    reason: str = Field(min_length=10, max_length=2000)
    clarification: str | None = Field(default=None, max_length=5000)


class ReactivationDecision(BaseModel):
    dsa_id: UUID
    action: str = Field(pattern="^(approve|reject)$")
    admin_notes: str | None = Field(default=None, max_length=2000)


class ReactivationRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dsa_id: UUID
    dsa_name: str | None = None
    dsa_email: str | None = None
    dsa_code: str | None = None
    bank_name: str | None = None
    reason: str
    clarification: str | None = None
    status: str
    admin_notes: str | None = None
    processed_by: UUID | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None


class ReactivationListResponse(BaseModel):
    requests: list[ReactivationRequestOut]
    total: int
