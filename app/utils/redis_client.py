from functools import lru_cache

from redis.asyncio import Redis

from app.core.settings import settings

KEY_NAMESPACE = "eduloan"


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def redis_key(*parts: str) -> str:
    return ":".join([KEY_NAMESPACE, *[str(part) for part in parts]])
