"""
Optimizations API: suggested pipeline changes and their status lifecycle.

    pending → in_progress → completed | failed  (completed → failed when a
    merged change is reported broken)

Invalid transitions return 409.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.api.deps import get_agent_service, get_db, require
from greenci.auth.context import RequestContext
from greenci.auth.permissions import Permission
from greenci.schemas.schemas import (
    OptimizationApply,
    OptimizationCreate,
    OptimizationFail,
    OptimizationSchema,
    OptimizationStats,
    OptimizationStatusUpdate,
)
from greenci.services.agent_service import DEFAULT_AGENTS, AgentService
from greenci.services.optimization_service import OptimizationService, serialize_optimization

router = APIRouter(prefix="/api/optimizations", tags=["optimizations"])


@router.get("", response_model=list[OptimizationSchema])
async def list_optimizations(
    status: str | None = Query(None, pattern="^(pending|in_progress|completed|failed)$"),
    project_id: str | None = Query(None, description="GitLab project id"),
    impact: str | None = Query(None, pattern="^(high|medium|low)$"),
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    optimizations = await OptimizationService(db).list_optimizations(status, project_id, impact, limit)
    return [OptimizationSchema(**serialize_optimization(o)) for o in optimizations]


@router.get("/stats", response_model=OptimizationStats)
async def optimization_stats(
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return OptimizationStats(**await OptimizationService(db).get_stats())


@router.get("/{optimization_id}", response_model=OptimizationSchema)
async def get_optimization(
    optimization_id: int,
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    opt = await OptimizationService(db).get_optimization(optimization_id)
    return OptimizationSchema(**serialize_optimization(opt))


@router.post("", response_model=OptimizationSchema, status_code=201)
async def create_optimization(
    body: OptimizationCreate,
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    opt = await OptimizationService(db).create_optimization(
        body.project_id,
        body.title,
        body.description,
        type=body.type,
        impact=body.impact,
        estimated_savings_kg=body.estimated_savings_kg,
        metadata=body.metadata.model_dump(mode="json"),
    )
    return OptimizationSchema(**serialize_optimization(opt))


@router.patch("/{optimization_id}/status", response_model=OptimizationSchema)
async def update_optimization_status(
    optimization_id: int,
    body: OptimizationStatusUpdate,
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    opt = await OptimizationService(db).update_status(optimization_id, body.status)
    return OptimizationSchema(**serialize_optimization(opt))


@router.post("/{optimization_id}/apply", response_model=OptimizationSchema)
async def apply_optimization(
    optimization_id: int,
    body: OptimizationApply | None = None,
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
    db: AsyncSession = Depends(get_db),
    agents: AgentService = Depends(get_agent_service),
):
    body = body or OptimizationApply()
    agent_id = None
    if body.agent_name:
        agent_id = (await agents.get_agent(body.agent_name, create=body.agent_name in DEFAULT_AGENTS)).id
    opt = await OptimizationService(db).apply(optimization_id, mr_url=body.mr_url, agent_id=agent_id)
    return OptimizationSchema(**serialize_optimization(opt))


@router.post("/{optimization_id}/complete", response_model=OptimizationSchema)
async def complete_optimization(
    optimization_id: int,
    body: OptimizationApply | None = None,
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    mr_url = body.mr_url if body else None
    opt = await OptimizationService(db).complete(optimization_id, mr_url=mr_url)
    return OptimizationSchema(**serialize_optimization(opt))


@router.post("/{optimization_id}/fail", response_model=OptimizationSchema)
async def fail_optimization(
    optimization_id: int,
    body: OptimizationFail,
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    opt = await OptimizationService(db).fail(optimization_id, body.error)
    return OptimizationSchema(**serialize_optimization(opt))
