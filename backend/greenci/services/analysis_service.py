"""
Analysis Service: one end-to-end pipeline analysis.

    fetch (GitLab) → analyze → footprint + eco score → persist metric and
    optimizations → count the analysis on the agent

Used by POST /api/analysis/run and by worker.py for queued agent runs.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from greenci.analyzer.pipeline_analyzer import PipelineAnalyzer, PipelineSource
from greenci.carbon.calculator import CarbonCalculator
from greenci.config import settings
from greenci.middleware.metrics import pipeline_analyses_total
from greenci.schemas.schemas import AnalysisMetadata
from greenci.services.agent_service import AgentService, SQLAgentRepository
from greenci.services.metrics_service import MetricsService
from greenci.services.optimization_service import OptimizationService
from greenci.services.project_service import ProjectService

logger = logging.getLogger(__name__)

_JOB_FIELDS = ("name", "stage", "status", "duration", "started_at", "finished_at")


class AnalysisService:
    def __init__(
        self,
        session: AsyncSession,
        client: PipelineSource,
        calculator: CarbonCalculator | None = None,
    ):
        self.session = session
        self.calculator = calculator or CarbonCalculator.from_settings(settings)
        self.analyzer = PipelineAnalyzer(
            client,
            deep_scan_enabled=settings.deep_scan_enabled,
            max_parallel_per_stage=settings.max_parallel_per_stage,
        )

    async def run_analysis(
        self,
        gitlab_project_id: str,
        pipeline_id: str,
        agent_name: str | None = "green-ci-optimizer",
        count_on_agent: bool = True,
    ) -> dict:
        try:
            snapshot = await self.analyzer.fetch_snapshot(gitlab_project_id, pipeline_id)
            analysis = await self.analyzer.analyze_snapshot(snapshot)
        except Exception:
            pipeline_analyses_total.labels(status="failed").inc()
            raise

        pipeline = {"duration": snapshot.pipeline.get("duration")}
        jobs = [{k: job.get(k) for k in _JOB_FIELDS} for job in snapshot.jobs]

        metrics_service = MetricsService(self.session, self.calculator)
        footprint = self.calculator.calculate_pipeline_footprint(pipeline, jobs)

        metric_meta = AnalysisMetadata(
            pipeline_id=str(pipeline_id),
            extra={
                "patterns": [p["type"] for p in analysis["patterns"]],
                "confidence": footprint.confidence,
                "ref": snapshot.pipeline.get("ref"),
                "sha": snapshot.pipeline.get("sha"),
            },
        )
        project = await ProjectService(self.session).get_or_create(gitlab_project_id)
        project_average = await metrics_service.average_score(project.id)
        score = self.calculator.calculate_eco_score(
            pipeline, jobs, {"average_score": project_average} if project_average else None,
        )

        metric = await metrics_service.create_metric(
            gitlab_project_id,
            str(pipeline_id),
            int(pipeline["duration"] or 0),
            job_count=len(jobs),
            energy_kwh=footprint.energy_kwh,
            co2_kg=footprint.co2_kg,
            eco_score=score.score,
            grade=score.grade,
            metadata=metric_meta.model_dump(mode="json"),
        )

        optimization_service = OptimizationService(self.session)
        optimizations = []
        for item in analysis["optimizations"]:
            savings_seconds = item.get("estimated_savings") or 0
            meta = AnalysisMetadata(
                pipeline_id=str(pipeline_id),
                category=item["category"],
                automated=item["automated"],
                priority=item["priority"],
                extra={"analysis_ref": item["id"], "estimated_savings_seconds": savings_seconds},
            )
            optimizations.append(await optimization_service.create_optimization(
                gitlab_project_id,
                item["title"],
                item["description"],
                type=item["category"],
                impact=item["impact"],
                estimated_savings_kg=self.calculator.estimate_carbon(savings_seconds).co2_kg,
                metadata=meta.model_dump(mode="json"),
            ))

        if agent_name and count_on_agent:
            await AgentService(SQLAgentRepository(self.session)).record_analysis(agent_name)

        pipeline_analyses_total.labels(status="success").inc()
        logger.info(
            "Pipeline %s of project %s analysed: score %d (%s), %d optimizations",
            pipeline_id, gitlab_project_id, score.score, score.grade, len(optimizations),
        )
        return {
            "metric": metric,
            "optimizations": optimizations,
            "analysis": analysis,
            "footprint": footprint.to_dict(),
            "eco_score": score.to_dict(),
        }

