"""
Metrics Service: persistence and aggregation of scored pipeline runs.

Agents post either finished numbers or raw pipeline/job data; in the latter
case the footprint and eco score are computed here, with the project's
recent average score as the historical baseline.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.carbon.calculator import CarbonCalculator, grade_for_score
from greenci.config import settings
from greenci.database import as_naive_utc, utcnow
from greenci.errors import NotFoundError, ValidationError
from greenci.middleware.metrics import pipeline_co2_kg_total, eco_score as eco_score_histogram
from greenci.models import PipelineMetric, Project
from greenci.services.project_service import ProjectService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
HISTORY_DAYS = 30


def serialize_metric(metric: PipelineMetric) -> dict:
    return {
        "id": metric.id,
        "project_id": metric.project_id,
        "gitlab_project_id": metric.project.gitlab_project_id if metric.project else None,
        "pipeline_id": metric.pipeline_id,
        "timestamp": metric.timestamp,
        "duration": metric.duration,
        "job_count": metric.job_count,
        "energy_kwh": metric.energy_kwh,
        "co2_kg": metric.co2_kg,
        "eco_score": metric.eco_score,
        "grade": metric.grade,
        "metadata": metric.meta or {},
    }


class MetricsService:
    def __init__(self, session: AsyncSession, calculator: CarbonCalculator | None = None):
        self.session = session
        self.calculator = calculator or CarbonCalculator.from_settings(settings)

    async def create_metric(
        self,
        gitlab_project_id: str,
        pipeline_id: str,
        duration: int,
        *,
        job_count: int | None = None,
        jobs: list[dict] | None = None,
        energy_kwh: float | None = None,
        co2_kg: float | None = None,
        eco_score: int | None = None,
        grade: str | None = None,
        timestamp: datetime | None = None,
        metadata: dict | None = None,
        project_name: str | None = None,
    ) -> PipelineMetric:
        project = await ProjectService(self.session).get_or_create(gitlab_project_id, project_name)

        jobs = jobs or []
        pipeline = {"duration": duration}
        if energy_kwh is None or co2_kg is None:
            footprint = self.calculator.calculate_pipeline_footprint(pipeline, jobs)
            energy_kwh = footprint.energy_kwh if energy_kwh is None else energy_kwh
            co2_kg = footprint.co2_kg if co2_kg is None else co2_kg
        if eco_score is None:
            average = await self.average_score(project.id)
            score = self.calculator.calculate_eco_score(
                pipeline, jobs, {"average_score": average} if average else None,
            )
            eco_score = score.score
            grade = score.grade
        elif grade is None:
            grade = grade_for_score(eco_score)

        metric = PipelineMetric(
            project_id=project.id,
            pipeline_id=str(pipeline_id),
            timestamp=as_naive_utc(timestamp) or utcnow(),
            duration=duration,
            job_count=job_count if job_count is not None else len(jobs),
            energy_kwh=energy_kwh,
            co2_kg=co2_kg,
            eco_score=eco_score,
            grade=grade,
            meta=metadata or {},
        )
        metric.project = project
        self.session.add(metric)
        await self.session.flush()

        pipeline_co2_kg_total.inc(co2_kg)
        eco_score_histogram.observe(eco_score)
        logger.info(
            "Metric %s recorded for pipeline %s: %.6f kg CO2, score %d (%s)",
            metric.id, pipeline_id, co2_kg, eco_score, grade,
        )
        return metric

    async def list_metrics(
        self,
        gitlab_project_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[PipelineMetric]:
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
        query = select(PipelineMetric)
        if gitlab_project_id:
            query = query.join(Project).where(Project.gitlab_project_id == str(gitlab_project_id))
        if start_date and end_date:
            query = query.where(PipelineMetric.timestamp.between(start_date, end_date))
        query = query.order_by(PipelineMetric.timestamp.desc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())

    async def project_metrics(self, project_id: int, days: int = HISTORY_DAYS) -> list[PipelineMetric]:
        since = utcnow() - timedelta(days=days)
        result = await self.session.execute(
            select(PipelineMetric)
            .where(PipelineMetric.project_id == project_id, PipelineMetric.timestamp >= since)
            .order_by(PipelineMetric.timestamp.desc())
        )
        return list(result.scalars())

    async def metrics_in_range(self, start_date: datetime, end_date: datetime) -> list[PipelineMetric]:
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")
        result = await self.session.execute(
            select(PipelineMetric)
            .where(PipelineMetric.timestamp.between(start_date, end_date))
            .order_by(PipelineMetric.timestamp.asc())
        )
        return list(result.scalars())

    async def average_score(self, project_id: int, days: int = HISTORY_DAYS) -> float | None:
        since = utcnow() - timedelta(days=days)
        result = await self.session.execute(
            select(func.avg(PipelineMetric.eco_score))
            .where(PipelineMetric.project_id == project_id, PipelineMetric.timestamp >= since)
        )
        average = result.scalar()
        return float(average) if average is not None else None

    async def get_summary(self) -> dict:
        row = (await self.session.execute(
            select(
                func.count(PipelineMetric.id),
                func.coalesce(func.sum(PipelineMetric.co2_kg), 0.0),
                func.coalesce(func.avg(PipelineMetric.eco_score), 0.0),
                func.coalesce(func.sum(PipelineMetric.energy_kwh), 0.0),
            )
        )).one()
        projects = (await self.session.execute(select(func.count(Project.id)))).scalar() or 0

        total_pipelines, total_co2, avg_score, total_energy = row
        return {
            "total_pipelines": total_pipelines,
            "total_co2": round(float(total_co2), 3),
            "total_energy": round(float(total_energy), 3),
            "average_score": round(float(avg_score)),
            "projects": projects,
        }

    async def delete_metric(self, metric_id: int) -> None:
        metric = await self.session.get(PipelineMetric, metric_id)
        if metric is None:
            raise NotFoundError(f"Metric {metric_id} not found")
        await self.session.delete(metric)
        await self.session.flush()
        logger.info("Metric %s deleted", metric_id)
