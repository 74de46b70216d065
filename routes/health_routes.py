"""
GET /health: liveness of the account store and the shared OTP store.

MongoDB down makes the service unhealthy (503). A Redis outage only
degrades it; an instance running without Redis uses the in-memory OTP
store and reports redis as ``not_configured``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dependencies import get_db, get_redis
from schemas.dto.responses.common import HealthResponse, HealthStatus
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


async def _check_mongo(db: Any) -> str:
    try:
        await db.client.admin.command("ping")
    except Exception as e:
        log.error("health_check_failed", component="mongodb", error=str(e))
        return "error"
    return "ok"


async def _check_redis(redis: Optional[Any]) -> str:
    if redis is None:
        return "not_configured"
    try:
        await redis.ping()
    except Exception as e:
        log.warning("health_check_failed", component="redis", error=str(e))
        return "error"
    return "ok"


def _overall(checks: dict[str, str]) -> HealthStatus:
    if checks["mongodb"] == "error":
        return "unhealthy"
    if checks["redis"] == "error":
        return "degraded"
    return "healthy"


@router.get("/health", response_model=HealthResponse)
async def health_check(db=Depends(get_db), redis=Depends(get_redis)) -> JSONResponse:
    checks = {
        "mongodb": await _check_mongo(db),
        "redis": await _check_redis(redis),
    }
    body = HealthResponse(status=_overall(checks), checks=checks)
    return JSONResponse(
        status_code=503 if body.status == "unhealthy" else 200,
        content=body.model_dump(),
    )
