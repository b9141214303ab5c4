import logging

from fastapi import FastAPI
from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool

from app.core.settings import settings
from app.db.init_db import init_db
from app.services.storage.adapter import S3StorageAdapter, StorageError
from app.services.storage.service import get_storage_adapter
from app.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup", extra={"environment": settings.environment})
        await init_db()
        adapter = get_storage_adapter()
        if isinstance(adapter, S3StorageAdapter):
            try:
                await run_in_threadpool(adapter.ensure_bucket)
            except StorageError as exc:
                logger.error("Object storage bucket unavailable: %s", exc)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        try:
            await get_redis_client().aclose()
        except RedisError as exc:
            logger.warning("Redis close failed: %s", exc)
