"""
Agents API: status of the Green CI agents, run triggering and run history.

A triggered run is recorded as running, queued on Redis for worker.py, and
finished by the worker or by the agent calling the completion endpoint.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.api.deps import get_agent_service, get_db, get_dispatcher, require
from greenci.auth.context import RequestContext
from greenci.auth.permissions import Permission
from greenci.schemas.schemas import (
    AgentLogEntry,
    AgentRunComplete,
    AgentRunRequest,
    AgentRunResponse,
    AgentSchema,
    AgentStatusUpdate,
)
from greenci.services.agent_service import AgentService, serialize_agent
from greenci.services.job_queue import JobDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])


@router.get("", response_model=dict[str, AgentSchema])
async def list_agents(
    ctx: RequestContext = Depends(require(Permission.AGENTS_READ)),
    agents: AgentService = Depends(get_agent_service),
):
    """All agents keyed by name; the three default agents always appear."""
    await agents.ensure_default_agents()
    return {a.name: AgentSchema(**serialize_agent(a)) for a in await agents.list_agents()}


@router.get("/{name}", response_model=AgentSchema)
async def get_agent(
    name: str,
    ctx: RequestContext = Depends(require(Permission.AGENTS_READ)),
    agents: AgentService = Depends(get_agent_service),
):
    return AgentSchema(**serialize_agent(await agents.get_agent(name)))


@router.post("/{name}/status", response_model=AgentSchema)
async def update_agent_status(
    name: str,
    body: AgentStatusUpdate,
    ctx: RequestContext = Depends(require(Permission.AGENTS_REPORT)),
    agents: AgentService = Depends(get_agent_service),
):
    agent = await agents.update_agent_status(
        name,
        body.status,
        total_analyses=body.total_analyses,
        total_mrs_created=body.total_mrs_created,
        avg_response_time=body.avg_response_time,
    )
    return AgentSchema(**serialize_agent(agent))


@router.post("/{name}/run", response_model=AgentRunResponse, status_code=202)
async def trigger_agent_run(
    name: str,
    body: AgentRunRequest | None = None,
    ctx: RequestContext = Depends(require(Permission.AGENTS_RUN)),
    db: AsyncSession = Depends(get_db),
    agents: AgentService = Depends(get_agent_service),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    params = body.model_dump(exclude_none=True) if body else {}
    ticket = await agents.trigger_run(name, params)
    # The worker must be able to see the run before it is queued
    await db.commit()

    try:
        await dispatcher.enqueue_agent_run(ticket.run.job_id, name, params)
    except Exception as exc:
        logger.error("Could not queue run %s for %s: %s", ticket.run.job_id, name, exc)
        await agents.complete_run(
            name, ticket.run.job_id, success=False, message=f"Queueing failed: {exc}",
        )
        await db.commit()
        raise HTTPException(status_code=503, detail="Agent run queue unavailable")

    logger.info("Agent %s triggered by %s (run %s)", name, ctx.actor, ticket.run.job_id)
    return AgentRunResponse(agent=AgentSchema(**serialize_agent(ticket.agent)), job_id=ticket.run.job_id)


@router.post("/{name}/runs/{job_id}/complete", response_model=AgentSchema)
async def complete_agent_run(
    name: str,
    job_id: str,
    body: AgentRunComplete,
    ctx: RequestContext = Depends(require(Permission.AGENTS_REPORT)),
    agents: AgentService = Depends(get_agent_service),
):
    agent = await agents.complete_run(
        name,
        job_id,
        success=body.success,
        analyses=body.analyses,
        mrs_created=body.mrs_created,
        response_time_ms=body.response_time_ms,
        message=body.message,
    )
    return AgentSchema(**serialize_agent(agent))


@router.get("/{name}/logs", response_model=list[AgentLogEntry])
async def agent_logs(
    name: str,
    limit: int = Query(10, ge=1, le=200),
    ctx: RequestContext = Depends(require(Permission.AGENTS_READ)),
    agents: AgentService = Depends(get_agent_service),
):
    return [AgentLogEntry(**entry) for entry in await agents.get_logs(name, limit)]


@router.get("/{name}/runs/{job_id}")
async def get_agent_run(
    name: str,
    job_id: str,
    ctx: RequestContext = Depends(require(Permission.AGENTS_READ)),
    agents: AgentService = Depends(get_agent_service),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """A run as recorded in the database, plus its queue entry when Redis still has it."""
    run = await agents.get_run(name, job_id)
    try:
        queue = await dispatcher.get_job_status(job_id)
    except Exception as exc:
        logger.warning("Queue status for %s unavailable: %s", job_id, exc)
        queue = None
    return {
        "job_id": run.job_id,
        "agent": name,
        "status": run.status,
        "trigger": run.trigger,
        "params": run.params or {},
        "message": run.message,
        "analyses": run.analyses,
        "mrs_created": run.mrs_created,
        "response_time_ms": run.response_time_ms,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "queue": queue,
    }
