"""
Health API: database, Redis queue and GitLab configuration.

The database is required; without Redis agent runs cannot be queued, so the
service reports `degraded`. GitLab is only checked for configuration.
"""

import time

import redis.asyncio as aioredis
from fastapi import APIRouter
from sqlalchemy import text

from greenci.config import VERSION, settings
from greenci.database import engine

router = APIRouter(tags=["health"])

HEALTH_CACHE_TTL = 10.0  # seconds

_cache: dict = {"result": None, "at": 0.0}


async def _check_database() -> dict:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return {"status": "disconnected", "error": str(exc)}
    return {"status": "connected"}


async def _check_queue() -> dict:
    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await r.ping()
    except Exception as exc:
        return {"status": "disconnected", "error": str(exc)}
    finally:
        await r.aclose()
    return {"status": "connected"}


def _check_gitlab() -> dict:
    return {
        "status": "configured" if settings.gitlab_token else "not_configured",
        "url": settings.gitlab_url,
        "deep_scan": settings.deep_scan_enabled,
    }


def overall_status(components: dict) -> str:
    if components["database"]["status"] != "connected":
        return "unhealthy"
    if components["redis"]["status"] != "connected":
        return "degraded"
    return "healthy"


@router.get("/api/health")
async def health_check():
    now = time.time()
    if _cache["result"] is not None and now - _cache["at"] < HEALTH_CACHE_TTL:
        return _cache["result"]

    components = {
        "database": await _check_database(),
        "redis": await _check_queue(),
        "gitlab": _check_gitlab(),
    }
    result = {
        "status": overall_status(components),
        "version": VERSION,
        "environment": settings.environment,
        "components": components,
    }
    _cache.update(result=result, at=now)
    return result
