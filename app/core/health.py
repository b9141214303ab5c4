"""Liveness/readiness payloads.

Readiness covers the hard dependencies (Postgres, Redis, object storage).
Optional integrations such as the payment gateway and SMTP are reported
under ``integrations`` and never make the service unready.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.settings import settings
from app.db.session import engine
from app.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"

Check = dict[str, Any]


def _failed(exc: Exception) -> Check:
    return {"status": "error", "error": str(exc) or exc.__class__.__name__}


async def _check_api() -> Check:
    return {"status": "ok", "version": APP_VERSION}


async def _check_db() -> Check:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        return _failed(exc)
    return {"status": "ok"}


async def _check_redis() -> Check:
    try:
        await get_redis_client().ping()
    except (RedisError, OSError) as exc:
        return _failed(exc)
    return {"status": "ok"}


async def _check_storage() -> Check:
    from app.services.storage.adapter import StorageError
    from app.services.storage.service import get_storage_adapter

    try:
        adapter = get_storage_adapter()
        reachable = await asyncio.to_thread(adapter.ping)
    except (StorageError, OSError, ValueError) as exc:
        return _failed(exc)
    if not reachable:
        return {"status": "error", "provider": adapter.provider, "error": "storage unavailable"}
    return {"status": "ok", "provider": adapter.provider}


def integrations() -> dict[str, bool]:
    return {
        "payment_gateway": bool(
            settings.hdfc_merchant_id and settings.hdfc_access_code and settings.hdfc_working_key
        ),
        "email": settings.smtp_configured,
    }


async def _collect_checks() -> dict[str, Check]:
    api, database, redis, storage = await asyncio.gather(
        _check_api(), _check_db(), _check_redis(), _check_storage()
    )
    return {"api": api, "database": database, "redis": redis, "storage": storage}


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


async def ready_payload(*, include_version: bool = False) -> dict[str, Any]:
    checks = await _collect_checks()
    ready = all(check.get("status") == "ok" for check in checks.values())
    payload: dict[str, Any] = {
        "status": "ok" if ready else "degraded",
        "ready": ready,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "integrations": integrations(),
    }
    if include_version:
        payload["version"] = APP_VERSION
    return payload


async def status_summary_payload() -> dict[str, Any]:
    return await ready_payload(include_version=True)
