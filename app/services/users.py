from __future__ import annotations

import logging
import secrets
import string
import time
from uuid import UUID

from fastapi import HTTPException, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_password_hash
from app.models.user import User
from app.schemas.auth import RegistrationForm, UploadedKycFile
from app.schemas.users import ProfileUpdate
from app.services import authz
from app.services.audit import model_snapshot, record_audit_log
from app.services.email_service import send_best_effort
from app.services.files import save_validated_upload
from app.services.uploads import KYC_RULE, UploadValidationError, read_upload

logger = logging.getLogger(__name__)

_DSA_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
KYC_DOCUMENT_TYPES = {"pan": "pan_card", "aadhar": "aadhar_card"}


def generate_dsa_id(bank_name: str, now_ms: int | None = None) -> str:
    """Bank prefix + last six digits of the epoch millis + three random characters."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    prefix = bank_name.strip().upper()[:3]
    suffix = "".join(secrets.choice(_DSA_SUFFIX_ALPHABET) for _ in range(3))
    return f"{prefix}{str(now_ms)[-6:]}{suffix}"


async def email_taken(db: AsyncSession, email: str, exclude_id: UUID | None = None) -> bool:
    stmt = select(func.count()).select_from(User).where(func.lower(User.email) == email.lower())
    if exclude_id:
        stmt = stmt.where(User.id != exclude_id)
    return bool((await db.execute(stmt)).scalar())


async def phone_taken(db: AsyncSession, phone: str, exclude_id: UUID | None = None) -> bool:
    stmt = select(func.count()).select_from(User).where(User.phone == phone)
    if exclude_id:
        stmt = stmt.where(User.id != exclude_id)
    return bool((await db.execute(stmt)).scalar())


async def ensure_unique_contact(
    db: AsyncSession,
    *,
    email: str | None = None,
    phone: str | None = None,
    exclude_id: UUID | None = None,
) -> None:
    if email and await email_taken(db, email, exclude_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="User with this email already exists"
        )
    if phone and await phone_taken(db, phone, exclude_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="User with this phone number already exists"
        )


async def register_user(
    db: AsyncSession,
    form: RegistrationForm,
    *,
    pan: UploadFile | None = None,
    aadhar: UploadFile | None = None,
) -> tuple[User, list[UploadedKycFile]]:
    is_dsa = form.role == "dsa"
    kyc_files = {"pan": pan, "aadhar": aadhar}
    if is_dsa:
        missing = [name.upper() for name, upload in kyc_files.items() if upload is None]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{' and '.join(missing)} document required for DSA registration",
            )

    await ensure_unique_contact(db, email=form.email, phone=form.phone)

    validated = {}
    if is_dsa:
        for name, upload in kyc_files.items():
            try:
                validated[name] = await read_upload(upload, KYC_RULE)
            except UploadValidationError as exc:
                exc.details.setdefault("field", name)
                raise exc.to_http() from exc

    user = User(
        email=form.email,
        hashed_password=get_password_hash(form.password),
        first_name=form.first_name,
        last_name=form.last_name,
        phone=form.phone,
        role=form.role,
        is_active=True,
        is_verified=not is_dsa,
        bank_name=form.bank_name if is_dsa else None,
        dsa_id=generate_dsa_id(form.bank_name) if is_dsa else None,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists") from exc

    uploaded: list[UploadedKycFile] = []
    for name, upload in validated.items():
        document_type = KYC_DOCUMENT_TYPES[name]
        record = await save_validated_upload(
            db,
            user,
            upload,
            kind="kyc",
            document_type=document_type,
            owner_refs={"user_id": str(user.id)},
        )
        setattr(user, f"{name}_document_url", record.file_url)
        uploaded.append(
            UploadedKycFile(
                document_type=document_type,
                file_name=record.original_name,
                file_url=record.file_url,
                file_size=record.file_size,
            )
        )

    record_audit_log(
        db,
        actor_id=user.id,
        action="user.register",
        resource_type="user",
        resource_id=str(user.id),
        new_value=model_snapshot(user),
    )
    await db.commit()
    await db.refresh(user)
    logger.info("User registered", extra={"user_id": str(user.id), "role": user.role})

    await send_best_effort(
        "welcome",
        {
            "first_name": user.first_name,
            "role": user.role,
            "dsa_id": user.dsa_id,
            "bank_name": user.bank_name,
        },
        user.email,
    )
    return user, uploaded


async def get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def get_profile(db: AsyncSession, current_user: User, user_id: UUID) -> User:
    authz.ensure_self_or_admin(current_user, user_id)
    if current_user.id == user_id:
        return current_user
    return await get_user_or_404(db, user_id)


def apply_profile_changes(user: User, data: dict) -> None:
    for field in ("first_name", "last_name", "phone", "profile_picture"):
        if field in data and data[field] is not None:
            setattr(user, field, data[field])
    if data.get("address") is not None:
        address = dict(user.address or {})
        address.update({k: v for k, v in data["address"].items() if v is not None})
        user.address = address


async def update_profile(
    db: AsyncSession,
    current_user: User,
    user_id: UUID,
    payload: ProfileUpdate,
) -> User:
    user = await get_profile(db, current_user, user_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("phone") and data["phone"] != user.phone:
        await ensure_unique_contact(db, phone=data["phone"], exclude_id=user.id)
    before = model_snapshot(user)
    apply_profile_changes(user, data)
    db.add(user)
    record_audit_log(
        db,
        actor_id=current_user.id,
        action="user.profile_update",
        resource_type="user",
        resource_id=str(user.id),
        old_value=before,
        new_value=model_snapshot(user),
    )
    await db.commit()
    await db.refresh(user)
    return user
