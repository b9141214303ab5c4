from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, status

from app.core.permissions import PermissionCode, UserRole, permissions_for_role, role_has_permission
from app.models.loan_application import LoanApplication
from app.models.user import User


async def check_permission(user: User, permission_code: PermissionCode | str) -> bool:
    if not user or not user.is_active:
        return False
    return role_has_permission(user.role, permission_code)


def effective_permissions(user: User) -> list[str]:
    return sorted(code.value for code in permissions_for_role(user.role))


def is_verified_dsa(user: User) -> bool:
    return user.role == UserRole.DSA.value and bool(user.is_verified) and bool(user.is_active)


def can_view_application(user: User, application: LoanApplication) -> bool:
    if user.role == UserRole.ADMIN.value:
        return True
    if user.role == UserRole.DSA.value:
        return is_verified_dsa(user)
    return application.user_id == user.id


def ensure_can_view_application(user: User, application: LoanApplication) -> None:
    if not can_view_application(user, application):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def ensure_self_or_admin(user: User, target_user_id: UUID) -> None:
    if user.role != UserRole.ADMIN.value and user.id != target_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
