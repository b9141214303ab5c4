from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_user_id
from app.core.permissions import PermissionCode, UserRole
from app.core.security import decode_token
from app.core.settings import settings
from app.db.session import get_db
from app.models import User
from app.services import authz

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def enforce_inactivity(last_active_at: Optional[datetime], now: datetime) -> None:
    timeout = timedelta(minutes=settings.session_timeout_minutes)
    if last_active_at and now - last_active_at > timeout:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired due to inactivity",
        )


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    return await _get_current_user(token, db, allow_inactive=False)


async def get_current_user_allow_inactive(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Resolve the caller even when deactivated; used only by the DSA reactivation flow."""
    return await _get_current_user(token, db, allow_inactive=True)


async def _get_current_user(token: str, db: AsyncSession, allow_inactive: bool) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    user_sub = payload.get("sub")
    token_version = payload.get("tv")
    if not user_sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_sub))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not user.is_active and not allow_inactive:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    if token_version is not None and user.token_version != token_version:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")

    now = datetime.now(timezone.utc)
    enforce_inactivity(user.last_active_at, now)
    user.last_active_at = now
    db.add(user)
    await db.commit()
    await db.refresh(user)
    set_user_id(str(user.id))
    return user


async def require_authenticated_user(current_user: User = Depends(get_current_user)) -> User:
    """Simple guard to require an authenticated user (no permission checks)."""
    return current_user


def require_role(*roles: UserRole | str):
    allowed = {role.value if isinstance(role, UserRole) else str(role) for role in roles}

    async def dependency(current_user: User = Depends(require_authenticated_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return current_user

    return dependency


def require_permission(permission_code: PermissionCode | str):
    async def dependency(current_user: User = Depends(require_authenticated_user)) -> User:
        allowed = await authz.check_permission(current_user, permission_code)
        if not allowed:
            target = permission_code.value if isinstance(permission_code, PermissionCode) else str(permission_code)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {target}",
            )
        return current_user

    return dependency


async def require_admin(current_user: User = Depends(require_authenticated_user)) -> User:
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


async def require_verified_dsa(current_user: User = Depends(require_authenticated_user)) -> User:
    if current_user.role != UserRole.DSA.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="DSA access required")
    if not authz.is_verified_dsa(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "dsa_pending_verification",
                "message": "Your DSA account is pending verification",
            },
        )
    return current_user


async def require_staff(current_user: User = Depends(require_authenticated_user)) -> User:
    """Admins, or DSAs that have been verified and are active."""
    if current_user.role == UserRole.ADMIN.value:
        return current_user
    if current_user.role == UserRole.DSA.value:
        return await require_verified_dsa(current_user)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
