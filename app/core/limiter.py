from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    key_prefix="eduloan",
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)

# Stricter limits for unauthenticated write endpoints.
REGISTRATION_LIMIT = "10/hour"
PAYMENT_INITIATE_LIMIT = "20/minute"

__all__ = ["limiter", "REGISTRATION_LIMIT", "PAYMENT_INITIATE_LIMIT"]
