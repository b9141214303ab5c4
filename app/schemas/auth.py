from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.core.security import password_policy_errors
from app.schemas.common import Bank, normalize_phone


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: EmailStr
    first_name: str
    last_name: str
    full_name: str
    phone: str
    role: str
    is_active: bool
    is_verified: bool
    profile_picture: Optional[str] = None
    address: Optional[dict] = None
    dsa_id: Optional[str] = None
    bank_name: Optional[str] = None
    branch_code: Optional[str] = None
    deadline_compliance: Optional[Decimal] = None
    missed_deadlines: Optional[int] = None
    rating: Optional[Decimal] = None
    last_login: Optional[datetime] = None
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UploadedKycFile(BaseModel):
    document_type: str
    file_name: str
    file_url: str
    file_size: int


class RegistrationResponse(BaseModel):
    success: bool = True
    message: str
    user: UserOut
    uploaded_files: list[UploadedKycFile] = []


class RegistrationForm(BaseModel):
    """Fields of the multipart registration form (KYC files travel separately)."""

    model_config = ConfigDict(use_enum_values=True)

    email: EmailStr
    password: str
    confirm_password: str
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: str
    role: str = Field(default="user", pattern="^(user|dsa)$")
    bank_name: Optional[Bank] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be blank")
        return value

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        return normalize_phone(value)

    @field_validator("bank_name", mode="before")
    @classmethod
    def _blank_bank(cls, value):
        return value or None

    @model_validator(mode="after")
    def _check_form(self) -> "RegistrationForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        errors = password_policy_errors(self.password)
        if errors:
            raise ValueError("; ".join(errors))
        if self.role == "dsa" and not self.bank_name:
            raise ValueError("Bank name is required for DSA registration")
        return self
