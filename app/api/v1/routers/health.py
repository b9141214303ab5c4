from fastapi import APIRouter, Response, status

from app.core.health import (
    live_payload,
    ready_payload,
    status_summary_payload,
)
from app.core.limiter import limiter

router = APIRouter(tags=["health"])


def _mark_unready(payload: dict, response: Response) -> dict:
    if not payload.get("ready", True):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return payload


@router.get("/health/live", summary="Liveness probe")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Readiness probe (database, Redis, object storage)")
@limiter.exempt
async def health_ready(response: Response) -> dict:
    return _mark_unready(await ready_payload(), response)


@router.get("/health", summary="Alias of the readiness probe")
@limiter.exempt
async def read_health(response: Response) -> dict:
    return _mark_unready(await ready_payload(), response)


@router.get("/status/summary", tags=["status"], summary="Dependency status with version")
@limiter.exempt
async def status_summary() -> dict:
    return await status_summary_payload()
