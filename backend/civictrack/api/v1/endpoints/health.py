"""
Liveness and readiness probes.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.config import settings
from civictrack.core.database import get_db
from civictrack.core.redis import get_redis

logger = logging.getLogger(__name__)

router = APIRouter()


async def check_database(db: AsyncSession) -> Dict[str, str]:
    try:
        await db.execute(text("SELECT postgis_version()"))
    except Exception as exc:
        logger.warning("Readiness: database check failed: %s", exc)
        return {"status": "fail", "reason": str(exc)}
    return {"status": "pass"}


async def check_redis(redis: Redis) -> Dict[str, str]:
    try:
        await redis.ping()
    except Exception as exc:
        logger.warning("Readiness: redis check failed: %s", exc)
        return {"status": "fail", "reason": str(exc)}
    return {"status": "pass"}


@router.get("/liveness", status_code=status.HTTP_200_OK)
async def liveness() -> Dict[str, str]:
    return {"status": "alive", "environment": settings.ENVIRONMENT}


@router.get("/readiness")
async def readiness(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    """Ready once PostGIS and Redis both answer."""
    checks = {
        "database": await check_database(db),
        "redis": await check_redis(redis),
    }
    ready = all(check["status"] == "pass" for check in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
