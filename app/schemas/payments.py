from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentInitiateRequest(BaseModel):
    application_id: UUID
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="INR", min_length=3, max_length=3)


class GatewayData(BaseModel):
    enc_request: str
    access_code: str
    merchant_id: str
    redirect_url: str
    cancel_url: str
    gateway_url: str


class PaymentInitiateResponse(BaseModel):
    success: bool = True
    payment_id: str
    transaction_ref: str
    gateway_data: GatewayData
    message: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_id: str
    transaction_ref: str
    application_id: UUID
    application_number: str | None = None
    user_id: UUID
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    amount: Decimal
    currency: str
    payment_method: str | None = None
    status: str
    gateway_transaction_id: str | None = None
    bank_ref_no: str | None = None
    failure_reason: str | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None


class PaymentVerifyRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    payment_id: str
    status: PaymentStatus
    transaction_id: str | None = None
    payment_method: str | None = None
    notes: str | None = Field(default=None, max_length=1000)


class PaymentFilters(BaseModel):
    status: str | None = None
    payment_method: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None


class PaymentExportRequest(PaymentFilters):
    format: str = Field(default="csv", pattern="^csv$")


class PaymentPagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool


class DailyRevenue(BaseModel):
    date: date
    revenue: Decimal
    count: int


class PaymentStatistics(BaseModel):
    total_payments: int
    completed_payments: int
    failed_payments: int
    pending_payments: int
    total_revenue: Decimal
    today_revenue: Decimal
    monthly_revenue: Decimal
    success_rate: str
    payment_method_stats: dict[str, int]
    daily_revenue: list[DailyRevenue]


class PaymentListResponse(BaseModel):
    payments: list[PaymentOut]
    pagination: PaymentPagination
    statistics: PaymentStatistics
