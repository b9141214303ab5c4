from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.auth import UserOut
from app.schemas.common import Bank, PINCODE_PATTERN, Pagination, normalize_phone


class UserStatusFilter(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


class Address(BaseModel):
    street: str | None = Field(default=None, max_length=200)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    pincode: str | None = None

    @field_validator("pincode")
    @classmethod
    def _check_pincode(cls, value: str | None) -> str | None:
        if value and not PINCODE_PATTERN.match(value):
            raise ValueError("Pincode must be 6 digits")
        return value


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=50)
    last_name: str | None = Field(default=None, min_length=1, max_length=50)
    phone: str | None = None
    profile_picture: str | None = Field(default=None, max_length=1024)
    address: Address | None = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)


class AdminUserUpdate(ProfileUpdate):
    email: EmailStr | None = None
    bank_name: Bank | None = None
    branch_code: str | None = Field(default=None, max_length=20)


class UserStatusUpdate(BaseModel):
    status: str = Field(pattern="^(active|inactive)$")
    reason: str | None = Field(default=None, max_length=500)


class DsaVerifyRequest(BaseModel):
    is_verified: bool


class DsaStatisticsSummary(BaseModel):
    total_reviewed: int = 0
    approved: int = 0
    rejected: int = 0
    missed_deadlines: int = 0
    deadline_compliance: float = 100.0


class AdminUserOut(UserOut):
    model_config = ConfigDict(from_attributes=True)

    verified_by: UUID | None = None
    verified_at: datetime | None = None
    deactivated_at: datetime | None = None
    deactivation_reason: str | None = None
    updated_at: datetime | None = None
    statistics: DsaStatisticsSummary | None = None


class UserListResponse(BaseModel):
    users: list[AdminUserOut]
    pagination: Pagination


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    email: EmailStr
    role: str
    dsa_id: str | None = None
    bank_name: str | None = None
    rating: Decimal | None = None
