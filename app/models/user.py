import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base

USER_ROLES = ("admin", "dsa", "user")
BANKS = ("SBI", "HDFC", "ICICI", "AXIS", "KOTAK")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'dsa', 'user')", name="role"),
        CheckConstraint(
            "bank_name IS NULL OR bank_name IN ('SBI', 'HDFC', 'ICICI', 'AXIS', 'KOTAK')",
            name="bank_name",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(15), nullable=False, unique=True)
    role = Column(String(10), nullable=False, default="user", index=True)
    profile_picture = Column(String(1024), nullable=True)
    address = Column(JSONB, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    is_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    token_version = Column(Integer, nullable=False, default=0, server_default="0")
    last_active_at = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # DSA profile
    dsa_id = Column(String(20), nullable=True, unique=True)
    bank_name = Column(String(10), nullable=True)
    branch_code = Column(String(20), nullable=True)
    pan_document_url = Column(String(1024), nullable=True)
    aadhar_document_url = Column(String(1024), nullable=True)
    verified_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivation_reason = Column(String(500), nullable=True)
    missed_deadlines = Column(Integer, nullable=False, default=0, server_default="0")
    deadline_compliance = Column(Numeric(5, 2), nullable=False, default=100, server_default="100")
    rating = Column(Numeric(3, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_dsa(self) -> bool:
        return self.role == "dsa"
