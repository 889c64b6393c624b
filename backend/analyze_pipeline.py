"""
Analyse the current GitLab pipeline from inside CI and report it.

Reads CI_PROJECT_ID / CI_PIPELINE_ID from the job environment, runs the
analyzer and calculator, prints the analysis as JSON on stdout, and posts the
metric to the dashboard when DASHBOARD_URL is configured.

Run with: python analyze_pipeline.py
"""

import asyncio
import json
import logging
import os
import sys

import httpx

from greenci.analyzer.pipeline_analyzer import PipelineAnalyzer
from greenci.carbon.calculator import CarbonCalculator
from greenci.clients.gitlab_client import GitLabClient
from greenci.config import settings
from greenci.errors import GreenCIError
from greenci.middleware.logging_config import configure_logging

logger = logging.getLogger("analyze_pipeline")


async def analyze(project_id: str, pipeline_id: str, client: GitLabClient) -> dict:
    calculator = CarbonCalculator.from_settings(settings)
    analyzer = PipelineAnalyzer(
        client,
        deep_scan_enabled=settings.deep_scan_enabled,
        max_parallel_per_stage=settings.max_parallel_per_stage,
    )
    snapshot = await analyzer.fetch_snapshot(project_id, pipeline_id)
    analysis = await analyzer.analyze_snapshot(snapshot)

    pipeline = {"duration": snapshot.pipeline.get("duration")}
    jobs = [
        {k: job.get(k) for k in ("name", "stage", "status", "duration", "started_at", "finished_at")}
        for job in snapshot.jobs
    ]
    footprint = calculator.calculate_pipeline_footprint(pipeline, jobs)
    score = calculator.calculate_eco_score(pipeline, jobs)

    return {
        "project_id": str(project_id),
        "pipeline_id": str(pipeline_id),
        "duration": int(pipeline["duration"] or 0),
        "job_count": len(jobs),
        "energy_kwh": footprint.energy_kwh,
        "co2_kg": footprint.co2_kg,
        "eco_score": score.score,
        "grade": score.grade,
        "footprint": footprint.to_dict(),
        "score": score.to_dict(),
        "analysis": analysis,
        "has_optimizations": bool(analysis["optimizations"]),
    }


def metric_payload(result: dict) -> dict:
    """The POST /api/metrics body for one analysed pipeline."""
    return {
        "project_id": result["project_id"],
        "pipeline_id": result["pipeline_id"],
        "duration": result["duration"],
        "job_count": result["job_count"],
        "energy_kwh": result["energy_kwh"],
        "co2_kg": result["co2_kg"],
        "eco_score": result["eco_score"],
        "grade": result["grade"],
        "metadata": {
            "kind": "analysis",
            "pipeline_id": result["pipeline_id"],
            "extra": {
                "patterns": [p["type"] for p in result["analysis"]["patterns"]],
                "optimizations": len(result["analysis"]["optimizations"]),
                "source": "ci",
            },
        },
    }


async def post_to_dashboard(result: dict, transport: httpx.AsyncBaseTransport | None = None) -> None:
    url = f"{settings.dashboard_url.rstrip('/')}/api/metrics"
    async with httpx.AsyncClient(timeout=settings.gitlab_timeout_seconds, transport=transport) as http:
        resp = await http.post(
            url,
            json=metric_payload(result),
            headers={"X-API-Key": settings.dashboard_api_key},
        )
        resp.raise_for_status()
    logger.info("Metric posted to %s", url)


async def main() -> int:
    configure_logging(settings.log_level, settings.log_format)

    project_id = os.environ.get("CI_PROJECT_ID")
    pipeline_id = os.environ.get("CI_PIPELINE_ID")
    if not project_id or not pipeline_id:
        logger.error("Missing pipeline context: CI_PROJECT_ID and CI_PIPELINE_ID are required")
        return 1

    logger.info("Analyzing pipeline %s for project %s", pipeline_id, project_id)
    try:
        async with GitLabClient() as client:
            result = await analyze(project_id, pipeline_id, client)
        logger.info(
            "Analysis complete: score %d (%s), %d optimizations",
            result["eco_score"], result["grade"], len(result["analysis"]["optimizations"]),
        )
        print(json.dumps(result, default=str))

        if settings.dashboard_url:
            await post_to_dashboard(result)
    except (GreenCIError, httpx.HTTPError) as exc:
        logger.error("Analysis failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
