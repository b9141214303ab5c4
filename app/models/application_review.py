import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

REVIEW_STATUSES = ("assigned", "approved", "rejected", "skipped", "missed", "released")
DECIDED_STATUSES = ("approved", "rejected")


class ApplicationReview(Base):
    """One DSA's pass over one application: its assignment and eventual decision."""

    __tablename__ = "application_reviews"
    __table_args__ = (
        UniqueConstraint("application_id", "dsa_id", name="uq_application_reviews_application_dsa"),
        CheckConstraint(
            "status IN ('assigned', 'approved', 'rejected', 'skipped', 'missed', 'released')",
            name="status",
        ),
        # A DSA works on a single application at a time.
        Index(
            "uq_application_reviews_active_dsa",
            "dsa_id",
            unique=True,
            postgresql_where=text("status = 'assigned'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    dsa_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="assigned")
    comments = Column(Text, nullable=True)
    deadline_at = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    decided_at = Column(DateTime(timezone=True), nullable=True)

    application = relationship("LoanApplication", back_populates="reviews")
    dsa = relationship("User", foreign_keys=[dsa_id])

    @property
    def decided_on_time(self) -> bool:
        if self.status not in DECIDED_STATUSES or not self.decided_at:
            return False
        return self.deadline_at is None or self.decided_at <= self.deadline_at
