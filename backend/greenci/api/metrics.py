"""
Metrics API: scored pipeline runs.

POST /api/metrics is the agent webhook: send computed numbers, or raw
jobs and let the server run the calculator.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.api.deps import get_calculator, get_db, require
from greenci.auth.context import RequestContext
from greenci.auth.permissions import Permission
from greenci.carbon.calculator import CarbonCalculator
from greenci.schemas.schemas import MetricCreate, MetricSchema, MetricsSummary
from greenci.services.metrics_service import MetricsService, serialize_metric
from greenci.services.project_service import ProjectService

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


@router.get("", response_model=list[MetricSchema])
async def list_metrics(
    project_id: str | None = Query(None, description="GitLab project id"),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(require(Permission.METRICS_READ)),
    db: AsyncSession = Depends(get_db),
):
    metrics = await MetricsService(db).list_metrics(project_id, start_date, end_date, limit)
    return [MetricSchema(**serialize_metric(m)) for m in metrics]


@router.get("/summary", response_model=MetricsSummary)
async def metrics_summary(
    ctx: RequestContext = Depends(require(Permission.METRICS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return MetricsSummary(**await MetricsService(db).get_summary())


@router.get("/range", response_model=list[MetricSchema])
async def metrics_in_range(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    ctx: RequestContext = Depends(require(Permission.METRICS_READ)),
    db: AsyncSession = Depends(get_db),
):
    metrics = await MetricsService(db).metrics_in_range(start_date, end_date)
    return [MetricSchema(**serialize_metric(m)) for m in metrics]


@router.get("/project/{gitlab_project_id}", response_model=list[MetricSchema])
async def metrics_for_project(
    gitlab_project_id: str,
    days: int = Query(30, ge=1, le=365),
    ctx: RequestContext = Depends(require(Permission.METRICS_READ)),
    db: AsyncSession = Depends(get_db),
):
    project = await ProjectService(db).get_by_gitlab_id(gitlab_project_id)
    metrics = await MetricsService(db).project_metrics(project.id, days)
    return [MetricSchema(**serialize_metric(m)) for m in metrics]


@router.post("", response_model=MetricSchema, status_code=201)
async def create_metric(
    body: MetricCreate,
    ctx: RequestContext = Depends(require(Permission.METRICS_WRITE)),
    db: AsyncSession = Depends(get_db),
    calculator: CarbonCalculator = Depends(get_calculator),
):
    metric = await MetricsService(db, calculator).create_metric(
        body.project_id,
        body.pipeline_id,
        body.duration,
        job_count=body.job_count,
        jobs=[j.model_dump() for j in body.jobs] if body.jobs else None,
        energy_kwh=body.energy_kwh,
        co2_kg=body.co2_kg,
        eco_score=body.eco_score,
        grade=body.grade,
        timestamp=body.timestamp,
        metadata=body.metadata.model_dump(mode="json"),
    )
    return MetricSchema(**serialize_metric(metric))


@router.delete("/{metric_id}", status_code=204)
async def delete_metric(
    metric_id: int,
    ctx: RequestContext = Depends(require(Permission.METRICS_DELETE)),
    db: AsyncSession = Depends(get_db),
):
    await MetricsService(db).delete_metric(metric_id)
