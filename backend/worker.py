"""
Green CI worker entrypoint: processes queued agent runs from Redis.

Each queued run names an agent and, optionally, a GitLab project and pipeline
to analyse. The worker runs the analysis, opens merge requests for automated
optimizations when asked to, and finishes the run through AgentService.

Run with: python worker.py
"""

import asyncio
import json
import logging
import time

import redis.asyncio as aioredis

from greenci.clients.gitlab_client import GitLabClient
from greenci.config import settings
from greenci.database import async_session
from greenci.errors import InvalidTransitionError, NotFoundError
from greenci.middleware.logging_config import configure_logging
from greenci.services.agent_service import AgentService, SQLAgentRepository
from greenci.services.analysis_service import AnalysisService
from greenci.services.job_queue import QUEUE_KEY, RedisJobDispatcher
from greenci.services.merge_request_service import MergeRequestService

logger = logging.getLogger("worker")


async def _finish_failed(agents: AgentService, db, agent_name: str, job_id: str, message: str) -> None:
    """Record a failed run; a run already finished elsewhere keeps its outcome."""
    try:
        await agents.complete_run(agent_name, job_id, success=False, message=message)
        await db.commit()
    except (InvalidTransitionError, NotFoundError) as exc:
        await db.rollback()
        logger.warning("Run %s could not be marked failed: %s", job_id, exc)


async def run_agent_job(job_data: dict, SessionMaker, dispatcher, client: GitLabClient) -> dict:
    """Execute one agent run and record its outcome; returns the result summary."""
    job_id = job_data["job_id"]
    agent_name = job_data["agent"]
    params = job_data.get("params") or {}

    async with SessionMaker() as db:
        agents = AgentService(SQLAgentRepository(db))
        try:
            run = await agents.get_run(agent_name, job_id)
        except NotFoundError as exc:
            logger.warning("Dropping run %s: %s", job_id, exc)
            await dispatcher.update_job_status(job_id, status="failed", result={"error": str(exc)})
            return {"error": str(exc)}
        if run.status != "running":
            logger.info("Run %s already %s, skipping", job_id, run.status)
            await dispatcher.update_job_status(job_id, status=run.status, result={"skipped": True})
            return {"skipped": True, "status": run.status}

        await dispatcher.update_job_status(job_id, status="running")
        t_start = time.time()
        try:
            summary: dict = {"analyses": 0, "mrs_created": 0}
            project_id, pipeline_id = params.get("project_id"), params.get("pipeline_id")
            if project_id and pipeline_id:
                result = await AnalysisService(db, client).run_analysis(
                    project_id, pipeline_id, agent_name=agent_name, count_on_agent=False,
                )
                summary.update(
                    analyses=1,
                    metric_id=result["metric"].id,
                    eco_score=result["eco_score"]["score"],
                    optimizations=len(result["optimizations"]),
                )

                if params.get("open_merge_requests"):
                    agent = await agents.get_agent(agent_name, create=False)
                    mr_service = MergeRequestService(db, client)
                    for opt in result["optimizations"]:
                        if (opt.meta or {}).get("automated"):
                            await mr_service.open_for(opt.id, agent_id=agent.id)
                            summary["mrs_created"] += 1
                # analysis results stand even if the run is finished elsewhere meanwhile
                await db.commit()
            else:
                logger.info("Run %s has no pipeline to analyse, recording a heartbeat", job_id)
        except Exception as exc:
            logger.error("Run %s failed: %s", job_id, exc, exc_info=True)
            await db.rollback()
            await _finish_failed(agents, db, agent_name, job_id, str(exc))
            await dispatcher.update_job_status(job_id, status="failed", result={"error": str(exc)})
            return {"error": str(exc)}

        elapsed_ms = round((time.time() - t_start) * 1000, 2)
        summary["duration_ms"] = elapsed_ms
        try:
            await agents.complete_run(
                agent_name,
                job_id,
                success=True,
                analyses=summary["analyses"],
                mrs_created=summary["mrs_created"],
                response_time_ms=elapsed_ms,
                message=f"{summary['analyses']} analyses, {summary['mrs_created']} merge requests",
            )
            await db.commit()
        except InvalidTransitionError as exc:
            await db.rollback()
            logger.warning("Run %s finished elsewhere before the worker: %s", job_id, exc)

        await dispatcher.update_job_status(job_id, status="completed", result=summary)
        logger.info("Run %s completed in %.0fms", job_id, elapsed_ms)
        return summary


async def main():
    """Main worker loop: polls the Redis queue for agent runs."""
    configure_logging(settings.log_level, settings.log_format)

    dispatcher = RedisJobDispatcher()
    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Worker started, listening on %s", QUEUE_KEY)

    async with GitLabClient() as client:
        while True:
            try:
                # Block-pop from queue (5 second timeout)
                result = await r.brpop(QUEUE_KEY, timeout=5)
                if result is None:
                    continue
                _, raw = result
                job_data = json.loads(raw)
                logger.info("Processing run %s for %s", job_data.get("job_id"), job_data.get("agent"))
                await run_agent_job(job_data, async_session, dispatcher, client)
            except Exception as exc:
                logger.error("Worker loop error: %s", exc, exc_info=True)
                await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
