from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class SettingsSection(str, Enum):
    GENERAL = "general"
    EMAIL = "email"
    NOTIFICATIONS = "notifications"
    SECURITY = "security"
    LOAN = "loan"


class GeneralSettings(BaseModel):
    site_name: str = Field(default="EduLoan", min_length=1, max_length=100)
    site_description: str = Field(default="Education loan management platform", max_length=500)
    support_email: EmailStr = "support@eduloan.in"
    max_file_size_mb: int = Field(default=10, ge=1, le=100)
    allowed_file_types: list[str] = Field(
        default_factory=lambda: ["pdf", "jpg", "jpeg", "png", "webp", "doc", "docx"]
    )
    maintenance_mode: bool = False


class EmailSettings(BaseModel):
    smtp_host: str = ""
    smtp_port: int = Field(default=587, gt=0, le=65535)
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: EmailStr = "noreply@eduloan.in"
    from_name: str = "EduLoan"
    email_enabled: bool = True


class NotificationSettings(BaseModel):
    email_notifications: bool = True
    sms_notifications: bool = False
    push_notifications: bool = True
    admin_alerts: bool = True


class SecuritySettings(BaseModel):
    password_min_length: int = Field(default=8, ge=6, le=64)
    session_timeout: int = Field(default=30, ge=5, le=1440)
    max_login_attempts: int = Field(default=5, ge=1, le=20)
    two_factor_auth: bool = False
    ip_whitelist: list[str] = Field(default_factory=list)


class LoanSettings(BaseModel):
    min_loan_amount: Decimal = Field(default=Decimal("50000"), gt=0)
    max_loan_amount: Decimal = Field(default=Decimal("5000000"), gt=0)
    default_interest_rate: Decimal = Field(default=Decimal("9.5"), ge=0, le=100)
    processing_fee: Decimal = Field(default=Decimal("1"), ge=0, le=100)
    auto_approval_limit: Decimal = Field(default=Decimal("0"), ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "LoanSettings":
        if self.min_loan_amount > self.max_loan_amount:
            raise ValueError("min_loan_amount cannot exceed max_loan_amount")
        return self


class SystemSettingsPayload(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    loan: LoanSettings = Field(default_factory=LoanSettings)


class SettingsUpdate(BaseModel):
    """Partial update: each section present is merged into the stored settings."""

    general: dict | None = None
    email: dict | None = None
    notifications: dict | None = None
    security: dict | None = None
    loan: dict | None = None


class SettingsAction(str, Enum):
    RESET = "reset"
    BACKUP = "backup"


class SettingsActionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    action: SettingsAction
    section: SettingsSection | None = None
    label: str | None = Field(default=None, max_length=100)
