from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    original_name: str
    object_key: str
    file_url: str
    file_type: str
    mime_type: str
    file_size: int
    document_type: str
    application_id: UUID | None = None
    chat_id: UUID | None = None
    uploaded_by: UUID
    uploader_name: str | None = None
    uploader_email: str | None = None
    status: str
    review_notes: str | None = None
    created_at: datetime | None = None


class FileListResponse(BaseModel):
    files: list[FileOut]
    total: int


class FileStatusUpdate(BaseModel):
    status: str = Field(pattern="^(pending|verified|rejected)$")
    notes: str | None = Field(default=None, max_length=1000)


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in: int
