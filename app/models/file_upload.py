import uuid

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

FILE_STATUSES = ("pending", "verified", "rejected")


class FileUpload(Base):
    __tablename__ = "file_uploads"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'verified', 'rejected')", name="status"),
        CheckConstraint("file_size > 0", name="file_size_positive"),
        Index("ix_file_uploads_application_document", "application_id", "document_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_name = Column(String(255), nullable=False)
    object_key = Column(String(1024), nullable=False, unique=True)
    file_url = Column(String(2048), nullable=False)
    file_type = Column(String(20), nullable=False)
    mime_type = Column(String(255), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    document_type = Column(String(50), nullable=False, default="other")
    storage_provider = Column(String(20), nullable=False, default="local")
    storage_bucket = Column(String(255), nullable=True)
    metadata_ = Column("metadata", JSONB, nullable=True)

    uploaded_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    application_id = Column(
        UUID(as_uuid=True), ForeignKey("loan_applications.id", ondelete="SET NULL"), nullable=True
    )
    chat_id = Column(UUID(as_uuid=True), ForeignKey("chats.id", ondelete="SET NULL"), nullable=True)

    status = Column(String(20), nullable=False, default="pending")
    review_notes = Column(Text, nullable=True)
    verified_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    uploader = relationship("User", foreign_keys=[uploaded_by])
    application = relationship("LoanApplication", back_populates="documents")
