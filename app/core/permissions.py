from enum import Enum
from typing import Iterable, List


class UserRole(str, Enum):
    ADMIN = "admin"
    DSA = "dsa"
    USER = "user"


class PermissionCode(str, Enum):
    # Applications
    APPLICATION_CREATE = "application.create"
    APPLICATION_VIEW_OWN = "application.view_own"
    APPLICATION_VIEW_ASSIGNED = "application.view_assigned"
    APPLICATION_REVIEW = "application.review"
    APPLICATION_MANAGE = "application.manage"

    # Files
    FILE_UPLOAD = "file.upload"
    FILE_VIEW_OWN = "file.view_own"
    FILE_VIEW_ALL = "file.view_all"
    FILE_VERIFY = "file.verify"

    # Messaging / notifications
    CHAT_USE = "chat.use"
    NOTIFICATION_VIEW = "notification.view"

    # Support
    TICKET_CREATE = "ticket.create"
    TICKET_VIEW_OWN = "ticket.view_own"
    TICKET_MANAGE = "ticket.manage"

    # Payments
    PAYMENT_INITIATE = "payment.initiate"
    PAYMENT_MANAGE = "payment.manage"

    # Profile / users
    PROFILE_MANAGE_OWN = "profile.manage_own"
    USER_MANAGE = "user.manage"
    DSA_VERIFY = "dsa.verify"
    DSA_REACTIVATION_REQUEST = "dsa.reactivation.request"

    # Administration
    SETTINGS_MANAGE = "settings.manage"
    ANALYTICS_VIEW = "analytics.view"
    EMAIL_SEND = "email.send"
    AUDIT_LOG_VIEW = "audit_log.view"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique permission codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized


ROLE_PERMISSIONS: dict[UserRole, frozenset[PermissionCode]] = {
    UserRole.USER: frozenset(
        {
            PermissionCode.APPLICATION_CREATE,
            PermissionCode.APPLICATION_VIEW_OWN,
            PermissionCode.FILE_UPLOAD,
            PermissionCode.FILE_VIEW_OWN,
            PermissionCode.CHAT_USE,
            PermissionCode.TICKET_CREATE,
            PermissionCode.TICKET_VIEW_OWN,
            PermissionCode.PAYMENT_INITIATE,
            PermissionCode.NOTIFICATION_VIEW,
            PermissionCode.PROFILE_MANAGE_OWN,
        }
    ),
    UserRole.DSA: frozenset(
        {
            PermissionCode.APPLICATION_REVIEW,
            PermissionCode.APPLICATION_VIEW_ASSIGNED,
            PermissionCode.FILE_UPLOAD,
            PermissionCode.FILE_VIEW_ALL,
            PermissionCode.FILE_VERIFY,
            PermissionCode.CHAT_USE,
            PermissionCode.TICKET_CREATE,
            PermissionCode.TICKET_VIEW_OWN,
            PermissionCode.NOTIFICATION_VIEW,
            PermissionCode.PROFILE_MANAGE_OWN,
            PermissionCode.DSA_REACTIVATION_REQUEST,
        }
    ),
    UserRole.ADMIN: frozenset(PermissionCode),
}


def permissions_for_role(role: str | UserRole | None) -> frozenset[PermissionCode]:
    try:
        return ROLE_PERMISSIONS[UserRole(role)]
    except ValueError:
        return frozenset()


def role_has_permission(role: str | UserRole | None, permission: PermissionCode | str) -> bool:
    try:
        code = PermissionCode(permission)
    except ValueError:
        return False
    return code in permissions_for_role(role)
