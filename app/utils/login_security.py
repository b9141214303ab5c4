from datetime import datetime, timezone

from fastapi import HTTPException, status
from redis.exceptions import RedisError

from app.core.settings import settings
from app.utils.redis_client import get_redis_client, redis_key


def _ttl(seconds: int) -> int:
    return max(1, seconds)


async def rate_limit(key: str, limit: int, window_seconds: int) -> None:
    redis = get_redis_client()
    try:
        pipe = redis.pipeline()
        pipe.incr(redis_key("rl", key))
        pipe.expire(redis_key("rl", key), window_seconds)
        count, _ = await pipe.execute()
    except RedisError:
        return
    if count > limit:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")


async def check_lockout(identifier: str) -> None:
    redis = get_redis_client()
    try:
        locked_until = await redis.get(redis_key("lock", identifier))
    except RedisError:
        return
    if locked_until:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts; try later",
        )


async def register_login_attempt(identifier: str, success: bool) -> None:
    redis = get_redis_client()
    fail_key = redis_key("fail", identifier)
    lock_key = redis_key("lock", identifier)
    window = _ttl(settings.login_lockout_minutes * 60)
    try:
        if success:
            await redis.delete(fail_key, lock_key)
            return
        attempts = await redis.incr(fail_key)
        await redis.expire(fail_key, window)
        locked = attempts >= settings.login_attempt_limit
        if locked:
            await redis.setex(lock_key, window, 1)
            await redis.delete(fail_key)
    except RedisError:
        return
    if locked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Account temporarily locked due to failed attempts",
        )


async def is_refresh_used(jti: str) -> bool:
    redis = get_redis_client()
    try:
        return bool(await redis.get(redis_key("refresh_used", jti)))
    except RedisError:
        return False


async def mark_refresh_used(jti: str, expires_at: datetime) -> None:
    redis = get_redis_client()
    ttl = int((expires_at - datetime.now(timezone.utc)).total_seconds())
    if ttl <= 0:
        return
    try:
        await redis.setex(redis_key("refresh_used", jti), ttl, 1)
    except RedisError:
        return
