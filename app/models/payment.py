import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

PAYMENT_STATES = ("initiated", "pending", "completed", "failed", "cancelled")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint(
            "status IN ('initiated', 'pending', 'completed', 'failed', 'cancelled')",
            name="status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(String(40), nullable=False, unique=True)
    transaction_ref = Column(String(40), nullable=False, unique=True)
    application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    payment_method = Column(String(30), nullable=True)
    status = Column(String(20), nullable=False, default="initiated", index=True)
    gateway = Column(String(20), nullable=False, default="hdfc")
    gateway_transaction_id = Column(String(100), nullable=True)
    bank_ref_no = Column(String(100), nullable=True)
    failure_reason = Column(Text, nullable=True)
    gateway_response = Column(JSONB, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    application = relationship("LoanApplication")
    user = relationship("User")
