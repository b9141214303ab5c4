from app.models.application_review import ApplicationReview
from app.models.audit_log import AuditLog
from app.models.chat import Chat, ChatMessage, ChatMessageReceipt, ChatParticipant
from app.models.file_upload import FileUpload
from app.models.loan_application import LoanApplication
from app.models.notification import Notification
from app.models.payment import Payment
from app.models.reactivation_request import DsaReactivationRequest
from app.models.support_ticket import SupportTicket, TicketResponse
from app.models.system_settings import SettingsBackup, SystemSettings
from app.models.user import User

__all__ = [
    "ApplicationReview",
    "AuditLog",
    "Chat",
    "ChatMessage",
    "ChatMessageReceipt",
    "ChatParticipant",
    "DsaReactivationRequest",
    "FileUpload",
    "LoanApplication",
    "Notification",
    "Payment",
    "SettingsBackup",
    "SupportTicket",
    "SystemSettings",
    "TicketResponse",
    "User",
]
