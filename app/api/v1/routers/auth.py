from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.api.auth_utils import constant_time_verify, enforce_login_limits, record_login_attempt
from app.core.limiter import REGISTRATION_LIMIT, limiter
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    password_policy_errors,
)
from app.core.settings import settings
from app.db.session import get_db
from app.models import User
from app.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegistrationForm,
    RegistrationResponse,
    TokenPair,
    UserOut,
)
from app.services import users as user_service
from app.utils.login_security import is_refresh_used, mark_refresh_used

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_pair(user: User) -> TokenPair:
    access = create_access_token(str(user.id), token_version=user.token_version)
    refresh = create_refresh_token(str(user.id), token_version=user.token_version)
    return TokenPair(access_token=access, refresh_token=refresh, role=user.role)


@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(REGISTRATION_LIMIT)
async def register(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
    first_name: str = Form(...),
    last_name: str = Form(...),
    phone: str = Form(...),
    role: str = Form("user"),
    bank_name: Optional[str] = Form(None),
    pan: Optional[UploadFile] = File(None),
    aadhar: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
) -> RegistrationResponse:
    try:
        form = RegistrationForm(
            email=email,
            password=password,
            confirm_password=confirm_password,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=role,
            bank_name=bank_name,
        )
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    user, uploaded = await user_service.register_user(db, form, pan=pan, aadhar=aadhar)
    message = (
        "DSA registration successful. Please wait for admin verification."
        if user.role == "dsa"
        else "Registration successful. You can now login."
    )
    return RegistrationResponse(message=message, user=UserOut.model_validate(user), uploaded_files=uploaded)


@router.post("/login", response_model=TokenPair)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenPair:
    client_ip = request.client.host if request.client else "unknown"
    email = credentials.email.strip().lower()
    await enforce_login_limits(client_ip, email)

    stmt = select(User).where(func.lower(User.email) == email)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user or not constant_time_verify(user.hashed_password if user else None, credentials.password):
        await record_login_attempt(email, success=False)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    # Deactivated DSAs still sign in so they can file a reactivation request.
    if not user.is_active and user.role != "dsa":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")

    now = datetime.now(timezone.utc)
    user.last_active_at = now
    user.last_login = now
    db.add(user)
    await db.commit()
    await db.refresh(user)

    await record_login_attempt(email, success=True)
    return _token_pair(user)


@router.post("/refresh", response_model=TokenPair)
async def refresh_tokens(
    payload: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenPair:
    try:
        token_data = decode_token(payload.refresh_token, expected_type="refresh")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user_id = token_data.get("sub")
    token_version = token_data.get("tv")
    jti = token_data.get("jti")
    exp_ts = token_data.get("exp")
    if not user_id or token_version is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if not jti or not exp_ts:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.token_version != token_version:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")
    if not user.is_active and user.role != "dsa":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")

    now = datetime.now(timezone.utc)
    deps.enforce_inactivity(user.last_active_at, now)
    user.last_active_at = now
    db.add(user)
    await db.commit()
    await db.refresh(user)

    # Refresh token rotation: reject reused tokens
    if await is_refresh_used(jti):
        user.token_version += 1
        db.add(user)
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token reuse detected")
    await mark_refresh_used(jti, datetime.fromtimestamp(exp_ts, tz=timezone.utc))
    return _token_pair(user)


@router.post("/logout", status_code=204)
async def logout(
    current_user: User = Depends(deps.get_current_user_allow_inactive),
    db: AsyncSession = Depends(get_db),
) -> None:
    current_user.token_version += 1
    db.add(current_user)
    await db.commit()
    return None


@router.get("/me", response_model=UserOut)
async def read_current_user(current_user: User = Depends(deps.get_current_user_allow_inactive)) -> UserOut:
    return UserOut.model_validate(current_user)


@router.post("/change-password", response_model=TokenPair)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TokenPair:
    if not constant_time_verify(current_user.hashed_password, payload.current_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="New password must differ from current password"
        )
    errors = password_policy_errors(payload.new_password)
    if errors:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "weak_password", "message": "Password does not meet policy", "details": {"errors": errors}},
        )

    current_user.hashed_password = get_password_hash(payload.new_password)
    current_user.token_version += 1
    current_user.last_active_at = datetime.now(timezone.utc)
    db.add(current_user)
    await db.commit()
    await db.refresh(current_user)
    return _token_pair(current_user)
