import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.models.types import EncryptedString, compact, compact_upper

APPLICATION_STATUSES = (
    "pending",
    "under_review",
    "partially_approved",
    "approved",
    "rejected",
    "cancelled",
)
PRIORITIES = ("low", "medium", "high", "urgent")
PAYMENT_STATUSES = ("pending", "completed", "failed")


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint("loan_amount > 0", name="loan_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'under_review', 'partially_approved', 'approved', 'rejected', 'cancelled')",
            name="status",
        ),
        CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="priority"),
        CheckConstraint("payment_status IN ('pending', 'completed', 'failed')", name="payment_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_number = Column(String(20), nullable=False, unique=True)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    personal_info = Column(JSONB, nullable=False)
    aadhar_number = Column(EncryptedString(normalize=compact), nullable=False)
    pan_number = Column(EncryptedString(normalize=compact_upper), nullable=False)
    education_info = Column(JSONB, nullable=False)
    loan_info = Column(JSONB, nullable=False)
    financial_info = Column(JSONB, nullable=False)
    co_applicant = Column(JSONB, nullable=True)
    loan_amount = Column(Numeric(14, 2), nullable=False)

    status = Column(String(30), nullable=False, default="pending", index=True)
    priority = Column(String(10), nullable=False, default="medium")
    payment_status = Column(String(20), nullable=False, default="pending")
    service_charges_paid = Column(Boolean, nullable=False, default=False, server_default="false")
    review_deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    comments = Column(Text, nullable=True)
    status_updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", foreign_keys=[user_id])
    reviews = relationship(
        "ApplicationReview",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="ApplicationReview.assigned_at",
    )
    documents = relationship(
        "FileUpload",
        back_populates="application",
        order_by="FileUpload.created_at",
    )

    @property
    def applicant_name(self) -> str:
        info = self.personal_info or {}
        return f"{info.get('first_name', '')} {info.get('last_name', '')}".strip()
