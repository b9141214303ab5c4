from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TimeRange(str, Enum):
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    LAST_YEAR = "1y"

    @property
    def days(self) -> int:
        return {"7d": 7, "30d": 30, "90d": 90, "1y": 365}[self.value]


class AdminStatistics(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    total_users: int
    total_applicants: int
    total_dsas: int
    active_dsas: int
    pending_dsa_verifications: int
    total_applications: int
    pending_applications: int
    under_review_applications: int
    approved_applications: int
    rejected_applications: int
    total_tickets: int
    open_tickets: int
    total_loan_amount: Decimal
    average_loan_amount: Decimal
    completion_rate: float


class DsaStatistics(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    dsa_id: str | None = None
    total_assigned: int
    pending_review: int
    approved: int
    rejected: int
    skipped: int
    missed_deadlines: int
    missed_deadlines_today: int
    success_rate: float
    deadline_compliance: float
    average_processing_hours: float
    available_applications: int
    total_commission: Decimal
    monthly_commission: Decimal


class ApplicantStatistics(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    total_applications: int
    pending_applications: int
    under_review_applications: int
    approved_applications: int
    rejected_applications: int
    approved_amount: Decimal
    unread_notifications: int


class AnalyticsOverview(BaseModel):
    total_applications: int
    total_users: int
    total_loan_amount: Decimal
    approval_rate: float
    avg_loan_amount: Decimal


class TrendPoint(BaseModel):
    date: date
    count: int


class AmountBucket(BaseModel):
    range: str
    count: int


class DsaPerformance(BaseModel):
    dsa_id: UUID
    dsa_code: str | None = None
    name: str
    bank_name: str | None = None
    reviews: int
    approvals: int
    rejections: int
    missed: int
    deadline_compliance: float


class RecentApplication(BaseModel):
    id: UUID
    application_number: str
    applicant_name: str
    loan_amount: Decimal
    status: str
    created_at: datetime | None = None


class AnalyticsTrends(BaseModel):
    application_trends: list[TrendPoint]
    status_distribution: dict[str, int]
    loan_amount_distribution: list[AmountBucket]


class AnalyticsPerformance(BaseModel):
    dsa_performance: list[DsaPerformance]
    recent_applications: list[RecentApplication]


class AnalyticsResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True, json_encoders={Decimal: lambda value: str(value)})

    overview: AnalyticsOverview
    trends: AnalyticsTrends
    performance: AnalyticsPerformance
    time_range: TimeRange
    generated_at: datetime


class AnalyticsActionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    action: str = Field(pattern="^(export|refresh)$")
    time_range: TimeRange = TimeRange.LAST_30_DAYS
