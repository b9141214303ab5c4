from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from uuid import UUID

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.utils.redis_client import get_redis_client, redis_key

CHANNEL_PREFIX = "chat"
logger = logging.getLogger(__name__)


def channel_for_chat(chat_id: UUID | str) -> str:
    return redis_key(CHANNEL_PREFIX, str(chat_id))


async def publish_message(chat_id: UUID | str, payload: dict[str, Any]) -> bool:
    """Best-effort fan-out; a Redis outage must not fail the write that already committed."""
    redis = get_redis_client()
    try:
        await redis.publish(channel_for_chat(chat_id), json.dumps(payload, default=str))
    except RedisError as exc:
        logger.warning("Chat publish failed for %s: %s", chat_id, exc)
        return False
    return True


async def subscribe(channel: str) -> PubSub:
    redis = get_redis_client()
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    return pubsub


async def unsubscribe(pubsub: PubSub, channel: str) -> None:
    try:
        await asyncio.wait_for(pubsub.unsubscribe(channel), timeout=2.0)
    except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
        logger.warning("Chat unsubscribe failed: %s", exc)
    finally:
        try:
            await asyncio.wait_for(pubsub.close(), timeout=2.0)
        except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
            logger.warning("Chat pubsub close failed: %s", exc)
