"""Initial EduLoan schema"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _fk(name: str, target: str, *, nullable: bool, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        server_onupdate=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("phone", sa.String(length=15), nullable=False),
        sa.Column("role", sa.String(length=10), nullable=False, server_default="user"),
        sa.Column("profile_picture", sa.String(length=1024), nullable=True),
        sa.Column("address", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_active_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_login", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("dsa_id", sa.String(length=20), nullable=True),
        sa.Column("bank_name", sa.String(length=10), nullable=True),
        sa.Column("branch_code", sa.String(length=20), nullable=True),
        sa.Column("pan_document_url", sa.String(length=1024), nullable=True),
        sa.Column("aadhar_document_url", sa.String(length=1024), nullable=True),
        _fk("verified_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("deactivation_reason", sa.String(length=500), nullable=True),
        sa.Column("missed_deadlines", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deadline_compliance", sa.Numeric(5, 2), nullable=False, server_default="100"),
        sa.Column("rating", sa.Numeric(3, 2), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("phone", name="uq_users_phone"),
        sa.UniqueConstraint("dsa_id", name="uq_users_dsa_id"),
        sa.CheckConstraint("role IN ('admin', 'dsa', 'user')", name="ck_users_role"),
        sa.CheckConstraint(
            "bank_name IS NULL OR bank_name IN ('SBI', 'HDFC', 'ICICI', 'AXIS', 'KOTAK')",
            name="ck_users_bank_name",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "loan_applications",
        _uuid_pk(),
        sa.Column("application_number", sa.String(length=20), nullable=False),
        _fk("user_id", "users.id", nullable=False),
        sa.Column("personal_info", postgresql.JSONB(), nullable=False),
        sa.Column("aadhar_number", sa.LargeBinary(), nullable=False),
        sa.Column("pan_number", sa.LargeBinary(), nullable=False),
        sa.Column("education_info", postgresql.JSONB(), nullable=False),
        sa.Column("loan_info", postgresql.JSONB(), nullable=False),
        sa.Column("financial_info", postgresql.JSONB(), nullable=False),
        sa.Column("co_applicant", postgresql.JSONB(), nullable=True),
        sa.Column("loan_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("service_charges_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("review_deadline", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        _fk("status_updated_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("application_number", name="uq_loan_applications_application_number"),
        sa.CheckConstraint("loan_amount > 0", name="ck_loan_applications_loan_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'under_review', 'partially_approved', 'approved', 'rejected', 'cancelled')",
            name="ck_loan_applications_status",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')", name="ck_loan_applications_priority"
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')",
            name="ck_loan_applications_payment_status",
        ),
    )
    op.create_index("ix_loan_applications_user_id", "loan_applications", ["user_id"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])
    op.create_index("ix_loan_applications_review_deadline", "loan_applications", ["review_deadline"])

    op.create_table(
        "application_reviews",
        _uuid_pk(),
        _fk("application_id", "loan_applications.id", nullable=False),
        _fk("dsa_id", "users.id", nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="assigned"),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("deadline_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.UniqueConstraint("application_id", "dsa_id", name="uq_application_reviews_application_dsa"),
        sa.CheckConstraint(
            "status IN ('assigned', 'approved', 'rejected', 'skipped', 'missed', 'released')",
            name="ck_application_reviews_status",
        ),
    )
    op.create_index("ix_application_reviews_application_id", "application_reviews", ["application_id"])
    op.create_index("ix_application_reviews_dsa_id", "application_reviews", ["dsa_id"])
    op.create_index(
        "uq_application_reviews_active_dsa",
        "application_reviews",
        ["dsa_id"],
        unique=True,
        postgresql_where=sa.text("status = 'assigned'"),
    )

    op.create_table(
        "chats",
        _uuid_pk(),
        _fk("application_id", "loan_applications.id", nullable=True),
        _fk("created_by", "users.id", nullable=True, ondelete="SET NULL"),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_chats_application_id", "chats", ["application_id"])

    op.create_table(
        "chat_participants",
        _uuid_pk(),
        _fk("chat_id", "chats.id", nullable=False),
        _fk("user_id", "users.id", nullable=False),
        sa.Column("role", sa.String(length=10), nullable=False),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("chat_id", "user_id", name="uq_chat_participants_chat_user"),
    )
    op.create_index("ix_chat_participants_user_id", "chat_participants", ["user_id"])

    op.create_table(
        "chat_messages",
        _uuid_pk(),
        _fk("chat_id", "chats.id", nullable=False),
        _fk("sender_id", "users.id", nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(length=10), nullable=False, server_default="text"),
        sa.Column("file_url", sa.String(length=2048), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "message_type IN ('text', 'file', 'image')", name="ck_chat_messages_message_type"
        ),
    )
    op.create_index("ix_chat_messages_chat_id", "chat_messages", ["chat_id"])

    op.create_table(
        "chat_message_receipts",
        _uuid_pk(),
        _fk("message_id", "chat_messages.id", nullable=False),
        _fk("user_id", "users.id", nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.UniqueConstraint("message_id", "user_id", name="uq_chat_receipts_message_user"),
    )
    op.create_index("ix_chat_message_receipts_user_id", "chat_message_receipts", ["user_id"])

    op.create_table(
        "file_uploads",
        _uuid_pk(),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("object_key", sa.String(length=1024), nullable=False),
        sa.Column("file_url", sa.String(length=2048), nullable=False),
        sa.Column("file_type", sa.String(length=20), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("document_type", sa.String(length=50), nullable=False, server_default="other"),
        sa.Column("storage_provider", sa.String(length=20), nullable=False, server_default="local"),
        sa.Column("storage_bucket", sa.String(length=255), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _fk("uploaded_by", "users.id", nullable=False),
        _fk("application_id", "loan_applications.id", nullable=True, ondelete="SET NULL"),
        _fk("chat_id", "chats.id", nullable=True, ondelete="SET NULL"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("review_notes", sa.Text(), nullable=True),
        _fk("verified_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("object_key", name="uq_file_uploads_object_key"),
        sa.CheckConstraint("status IN ('pending', 'verified', 'rejected')", name="ck_file_uploads_status"),
        sa.CheckConstraint("file_size > 0", name="ck_file_uploads_file_size_positive"),
    )
    op.create_index("ix_file_uploads_uploaded_by", "file_uploads", ["uploaded_by"])
    op.create_index(
        "ix_file_uploads_application_document", "file_uploads", ["application_id", "document_type"]
    )

    op.create_table(
        "payments",
        _uuid_pk(),
        sa.Column("payment_id", sa.String(length=40), nullable=False),
        sa.Column("transaction_ref", sa.String(length=40), nullable=False),
        _fk("application_id", "loan_applications.id", nullable=False),
        _fk("user_id", "users.id", nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("payment_method", sa.String(length=30), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="initiated"),
        sa.Column("gateway", sa.String(length=20), nullable=False, server_default="hdfc"),
        sa.Column("gateway_transaction_id", sa.String(length=100), nullable=True),
        sa.Column("bank_ref_no", sa.String(length=100), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("gateway_response", postgresql.JSONB(), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("payment_id", name="uq_payments_payment_id"),
        sa.UniqueConstraint("transaction_ref", name="uq_payments_transaction_ref"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        sa.CheckConstraint(
            "status IN ('initiated', 'pending', 'completed', 'failed', 'cancelled')",
            name="ck_payments_status",
        ),
    )
    op.create_index("ix_payments_application_id", "payments", ["application_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "notifications",
        _uuid_pk(),
        _fk("user_id", "users.id", nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False, server_default="info"),
        sa.Column("link", sa.String(length=500), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("type IN ('info', 'success', 'warning', 'error')", name="ck_notifications_type"),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read"])

    op.create_table(
        "dsa_reactivation_requests",
        _uuid_pk(),
        _fk("dsa_id", "users.id", nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("clarification", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="pending"),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        _fk("processed_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_dsa_reactivation_requests_status"
        ),
    )
    op.create_index("ix_dsa_reactivation_requests_dsa_id", "dsa_reactivation_requests", ["dsa_id"])
    op.create_index("ix_dsa_reactivation_requests_status", "dsa_reactivation_requests", ["status"])

    op.create_table(
        "support_tickets",
        _uuid_pk(),
        sa.Column("ticket_number", sa.String(length=20), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("tags", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        _fk("user_id", "users.id", nullable=False),
        _fk("application_id", "loan_applications.id", nullable=True, ondelete="SET NULL"),
        _fk("assigned_to", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _fk("resolved_by", "users.id", nullable=True, ondelete="SET NULL"),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("ticket_number", name="uq_support_tickets_ticket_number"),
        sa.CheckConstraint(
            "category IN ('technical', 'general', 'billing', 'process', 'loan_inquiry', 'document', 'other')",
            name="ck_support_tickets_category",
        ),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_support_tickets_priority"),
        sa.CheckConstraint(
            "status IN ('open', 'in_progress', 'resolved', 'closed')", name="ck_support_tickets_status"
        ),
    )
    op.create_index("ix_support_tickets_user_id", "support_tickets", ["user_id"])
    op.create_index("ix_support_tickets_status", "support_tickets", ["status"])

    op.create_table(
        "ticket_responses",
        _uuid_pk(),
        _fk("ticket_id", "support_tickets.id", nullable=False),
        _fk("user_id", "users.id", nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("attachments", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        _created_at(),
    )
    op.create_index("ix_ticket_responses_ticket_id", "ticket_responses", ["ticket_id"])

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _fk("updated_by", "users.id", nullable=True, ondelete="SET NULL"),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "settings_backups",
        _uuid_pk(),
        sa.Column("label", sa.String(length=100), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        _fk("created_by", "users.id", nullable=True, ondelete="SET NULL"),
        _created_at(),
    )

    op.create_table(
        "audit_logs",
        _uuid_pk(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    for table in (
        "audit_logs",
        "settings_backups",
        "system_settings",
        "ticket_responses",
        "support_tickets",
        "dsa_reactivation_requests",
        "notifications",
        "payments",
        "file_uploads",
        "chat_message_receipts",
        "chat_messages",
        "chat_participants",
        "chats",
        "application_reviews",
        "loan_applications",
        "users",
    ):
        op.drop_table(table)
