from typing import Optional

from app.core.security import pwd_context, verify_password
from app.core.settings import settings
from app.utils.login_security import check_lockout, rate_limit, register_login_attempt

# Hash of a random throwaway password; verified against when the email is unknown.
_DUMMY_HASH = pwd_context.hash("eduloan-timing-equalizer")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def constant_time_verify(user_password_hash: Optional[str], password: str) -> bool:
    if user_password_hash:
        return verify_password(password, user_password_hash)
    verify_password(password, _DUMMY_HASH)
    return False


async def enforce_login_limits(ip: str, email: str) -> None:
    """Per-IP and per-email throttles, then the failed-attempt lockout."""
    email = normalize_email(email)
    await rate_limit(f"login:ip:{ip}", limit=settings.rate_limit_per_minute, window_seconds=60)
    await rate_limit(f"login:email:{email}", limit=settings.login_attempt_limit * 2, window_seconds=60)
    await check_lockout(email)


async def record_login_attempt(email: str, success: bool) -> None:
    await register_login_attempt(normalize_email(email), success)
