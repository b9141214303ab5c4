from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.common import AADHAR_PATTERN, PAN_PATTERN, PINCODE_PATTERN, normalize_phone


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    PARTIALLY_APPROVED = "partially_approved"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ApplicationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DeadlineLevel(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"
    EXPIRED = "expired"


class ApplicationSort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    AMOUNT_DESC = "amount_desc"
    AMOUNT_ASC = "amount_asc"
    DEADLINE = "deadline"


class ApplicantAddress(BaseModel):
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    pincode: str

    @field_validator("pincode")
    @classmethod
    def _check_pincode(cls, value: str) -> str:
        if not PINCODE_PATTERN.match(value):
            raise ValueError("Pincode must be 6 digits")
        return value


class PersonalInfo(BaseModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    phone: str
    date_of_birth: date
    aadhar_number: str
    pan_number: str
    address: ApplicantAddress

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        return normalize_phone(value)

    @field_validator("aadhar_number")
    @classmethod
    def _check_aadhar(cls, value: str) -> str:
        cleaned = value.replace(" ", "")
        if not AADHAR_PATTERN.match(cleaned):
            raise ValueError("Aadhar number must be 12 digits")
        return cleaned

    @field_validator("pan_number")
    @classmethod
    def _check_pan(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not PAN_PATTERN.match(cleaned):
            raise ValueError("Invalid PAN number format")
        return cleaned

    @field_validator("date_of_birth")
    @classmethod
    def _check_dob(cls, value: date) -> date:
        if value >= date.today():
            raise ValueError("Date of birth must be in the past")
        return value


class EducationInfo(BaseModel):
    institute_name: str = Field(min_length=1, max_length=200)
    course: str = Field(min_length=1, max_length=200)
    duration: str = Field(min_length=1, max_length=50)
    admission_date: date | None = None
    fee_structure: Decimal = Field(gt=0)


class LoanInfo(BaseModel):
    amount: Decimal = Field(gt=0)
    purpose: str = Field(min_length=1, max_length=500)
    tenure: int | None = Field(default=None, ge=1, le=360)


class FinancialInfo(BaseModel):
    annual_income: Decimal = Field(ge=0)
    employment_type: str = Field(min_length=1, max_length=50)
    employer_name: str | None = Field(default=None, max_length=200)
    work_experience: str | None = Field(default=None, max_length=50)


class CoApplicant(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    relation: str = Field(min_length=1, max_length=50)
    annual_income: Decimal = Field(ge=0)


class ApplicationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    personal_info: PersonalInfo
    education_info: EducationInfo
    loan_info: LoanInfo
    financial_info: FinancialInfo
    co_applicant: CoApplicant | None = None
    priority: ApplicationPriority = ApplicationPriority.MEDIUM


class ApplicationStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: ApplicationStatus
    comments: str | None = Field(default=None, max_length=2000)


class DeadlineInfo(BaseModel):
    review_deadline: datetime
    time_remaining_hours: int
    level: DeadlineLevel
    is_urgent: bool
    is_expired: bool


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dsa_id: UUID
    dsa_name: str | None = None
    status: str
    comments: str | None = None
    assigned_at: datetime | None = None
    decided_at: datetime | None = None
    deadline_at: datetime | None = None


class DocumentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    original_name: str
    document_type: str
    file_url: str
    file_size: int
    mime_type: str
    status: str
    created_at: datetime | None = None


class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_number: str
    user_id: UUID
    personal_info: dict
    education_info: dict
    loan_info: dict
    financial_info: dict
    co_applicant: dict | None = None
    loan_amount: Decimal
    status: str
    priority: str
    payment_status: str
    service_charges_paid: bool
    comments: str | None = None
    progress: int = 0
    deadline: DeadlineInfo | None = None
    reviews: list[ReviewOut] = []
    documents: list[DocumentSummary] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationOut]
    total: int
    page: int
    total_pages: int


class NextApplicationRequest(BaseModel):
    application_id: UUID | None = None
    skip_to_next: bool = False


class NextApplicationResponse(BaseModel):
    application: ApplicationOut | None = None
    message: str
    time_remaining_hours: int | None = None
    is_urgent: bool = False
    has_completed_all: bool = False
    pending_applications: int = 0
