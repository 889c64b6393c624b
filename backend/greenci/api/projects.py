"""
Projects API: GitLab projects tracked by the dashboard, with their
metrics and optimizations.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.api.deps import get_db, require
from greenci.auth.context import RequestContext
from greenci.auth.permissions import Permission
from greenci.schemas.schemas import (
    MetricSchema,
    OptimizationSchema,
    ProjectCreate,
    ProjectSchema,
    ProjectUpdate,
)
from greenci.services.metrics_service import MetricsService, serialize_metric
from greenci.services.optimization_service import OptimizationService, serialize_optimization
from greenci.services.project_service import ProjectService, serialize_project

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("", response_model=list[ProjectSchema])
async def list_projects(
    ctx: RequestContext = Depends(require(Permission.PROJECTS_READ)),
    db: AsyncSession = Depends(get_db),
):
    projects = await ProjectService(db).list_projects()
    return [ProjectSchema(**serialize_project(p)) for p in projects]


@router.post("", response_model=ProjectSchema, status_code=201)
async def create_project(
    body: ProjectCreate,
    ctx: RequestContext = Depends(require(Permission.PROJECTS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    project = await ProjectService(db).create_project(
        body.gitlab_project_id, body.name, body.description, body.settings,
    )
    return ProjectSchema(**serialize_project(project))


@router.get("/gitlab/{gitlab_project_id}", response_model=ProjectSchema)
async def get_project_by_gitlab_id(
    gitlab_project_id: str,
    ctx: RequestContext = Depends(require(Permission.PROJECTS_READ)),
    db: AsyncSession = Depends(get_db),
):
    project = await ProjectService(db).get_by_gitlab_id(gitlab_project_id)
    return ProjectSchema(**serialize_project(project))


@router.get("/{project_id}", response_model=ProjectSchema)
async def get_project(
    project_id: int,
    ctx: RequestContext = Depends(require(Permission.PROJECTS_READ)),
    db: AsyncSession = Depends(get_db),
):
    project = await ProjectService(db).get_project(project_id)
    return ProjectSchema(**serialize_project(project))


@router.patch("/{project_id}", response_model=ProjectSchema)
async def update_project(
    project_id: int,
    body: ProjectUpdate,
    ctx: RequestContext = Depends(require(Permission.PROJECTS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    project = await ProjectService(db).update_project(project_id, **body.model_dump(exclude_unset=True))
    return ProjectSchema(**serialize_project(project))


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: int,
    ctx: RequestContext = Depends(require(Permission.PROJECTS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    await ProjectService(db).delete_project(project_id)


@router.get("/{project_id}/metrics", response_model=list[MetricSchema])
async def project_metrics(
    project_id: int,
    days: int = Query(30, ge=1, le=365),
    ctx: RequestContext = Depends(require(Permission.METRICS_READ)),
    db: AsyncSession = Depends(get_db),
):
    await ProjectService(db).get_project(project_id)
    metrics = await MetricsService(db).project_metrics(project_id, days)
    return [MetricSchema(**serialize_metric(m)) for m in metrics]


@router.get("/{project_id}/optimizations", response_model=list[OptimizationSchema])
async def project_optimizations(
    project_id: int,
    status: str | None = Query(None, pattern="^(pending|in_progress|completed|failed)$"),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    await ProjectService(db).get_project(project_id)
    optimizations = await OptimizationService(db).project_optimizations(project_id, status)
    return [OptimizationSchema(**serialize_optimization(o)) for o in optimizations]
