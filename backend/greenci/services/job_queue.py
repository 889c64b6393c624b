"""
Agent run queue on Redis.

A run is a hash `greenci:agent:job:<job_id>` (status, timestamps, result)
plus an entry pushed onto the `greenci:agent:queue` list that worker.py
block-pops. API handlers depend on the JobDispatcher interface so tests can
swap in an in-memory dispatcher.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as aioredis

from greenci.config import settings

logger = logging.getLogger(__name__)

QUEUE_KEY = "greenci:agent:queue"
JOB_KEY_PREFIX = "greenci:agent:job:"
JOB_TTL_SECONDS = 86400


class JobDispatcher(Protocol):
    async def enqueue_agent_run(self, job_id: str, agent_name: str, params: dict) -> None: ...
    async def get_job_status(self, job_id: str) -> dict | None: ...
    async def update_job_status(self, job_id: str, *, status: str, result: dict | None = None) -> None: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RedisJobDispatcher:
    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or settings.redis_url

    async def _redis(self) -> aioredis.Redis:
        return aioredis.from_url(self.redis_url, decode_responses=True)

    async def enqueue_agent_run(self, job_id: str, agent_name: str, params: dict) -> None:
        r = await self._redis()
        try:
            key = f"{JOB_KEY_PREFIX}{job_id}"
            await r.hset(key, mapping={
                "job_id": job_id,
                "agent": agent_name,
                "status": "queued",
                "queued_at": _now(),
                "completed_at": "",
            })
            await r.expire(key, JOB_TTL_SECONDS)
            await r.lpush(QUEUE_KEY, json.dumps({
                "job_id": job_id,
                "agent": agent_name,
                "params": params,
            }))
        finally:
            await r.aclose()
        logger.info("Queued agent run %s for %s", job_id, agent_name)

    async def get_job_status(self, job_id: str) -> dict | None:
        r = await self._redis()
        try:
            data = await r.hgetall(f"{JOB_KEY_PREFIX}{job_id}")
        finally:
            await r.aclose()
        return data or None

    async def update_job_status(self, job_id: str, *, status: str, result: dict | None = None) -> None:
        updates: dict = {"status": status}
        if status == "running":
            updates["started_at"] = _now()
        if status in ("completed", "failed"):
            updates["completed_at"] = _now()
        if result:
            updates["result"] = json.dumps(result, default=str)

        r = await self._redis()
        try:
            await r.hset(f"{JOB_KEY_PREFIX}{job_id}", mapping=updates)
        finally:
            await r.aclose()
