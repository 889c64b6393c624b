"""
Pipeline Analyzer: turns one pipeline's timing and job data into
bottleneck / parallelism / cache diagnostics and a ranked list of
optimizations.

Flow:
    1. Fetch pipeline, jobs, test report and (deep scan only) dependencies concurrently
    2. Run the five sub-analyses concurrently
    3. Detect named patterns from thresholds
    4. Generate one insight per triggered condition
    5. Rank insights into priority optimizations and quick wins

Any failing fetch or sub-analysis aborts the whole run; there is no partial result.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from greenci.carbon import coefficients as coef

logger = logging.getLogger(__name__)


class PipelineSource(Protocol):
    """The CI platform calls the analyzer depends on (GitLabClient satisfies it)."""

    async def get_pipeline(self, project_id, pipeline_id) -> dict: ...
    async def get_pipeline_jobs(self, project_id, pipeline_id) -> list[dict]: ...
    async def get_test_reports(self, project_id, pipeline_id) -> dict | None: ...
    async def get_dependencies(self, project_id) -> list[dict] | None: ...


@dataclass
class PipelineSnapshot:
    project_id: Any
    pipeline_id: Any
    pipeline: dict
    jobs: list[dict]
    test_reports: dict | None = None
    dependencies: list[dict] | None = None


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # timestamps without an offset are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _duration(job: dict) -> float:
    return job.get("duration") or 0


class PipelineAnalyzer:
    def __init__(
        self,
        client: PipelineSource,
        deep_scan_enabled: bool = False,
        max_parallel_per_stage: int = coef.DEFAULT_MAX_PARALLEL_PER_STAGE,
    ):
        self.client = client
        self.deep_scan_enabled = deep_scan_enabled
        self.max_parallel_per_stage = max_parallel_per_stage

    async def analyze_pipeline(self, project_id, pipeline_id) -> dict:
        snapshot = await self.fetch_snapshot(project_id, pipeline_id)
        return await self.analyze_snapshot(snapshot)

    async def fetch_snapshot(self, project_id, pipeline_id) -> PipelineSnapshot:
        """Fetch everything one analysis needs; any failed call fails the whole fetch."""
        try:
            pipeline, jobs, test_reports, dependency_data = await asyncio.gather(
                self.client.get_pipeline(project_id, pipeline_id),
                self.client.get_pipeline_jobs(project_id, pipeline_id),
                self.client.get_test_reports(project_id, pipeline_id),
                self._fetch_dependencies(project_id),
            )
        except Exception:
            logger.error(
                "Fetching pipeline %s (project %s) failed", pipeline_id, project_id, exc_info=True,
            )
            raise
        return PipelineSnapshot(
            project_id=project_id,
            pipeline_id=pipeline_id,
            pipeline=pipeline,
            jobs=jobs,
            test_reports=test_reports,
            dependencies=dependency_data,
        )

    async def analyze_snapshot(self, snapshot: PipelineSnapshot) -> dict:
        pipeline, jobs = snapshot.pipeline, snapshot.jobs
        logger.info(
            "Starting analysis for pipeline %s (project %s)", snapshot.pipeline_id, snapshot.project_id,
        )
        try:
            timing, parallelism, cache, dependencies, tests = await asyncio.gather(
                self._analyze_timing(pipeline, jobs),
                self._analyze_parallelism(jobs),
                self._analyze_caching(jobs),
                self._analyze_dependencies(snapshot.dependencies),
                self._analyze_tests(snapshot.test_reports, jobs),
            )
        except Exception:
            logger.error(
                "Pipeline analysis failed for pipeline %s (project %s)",
                snapshot.pipeline_id, snapshot.project_id, exc_info=True,
            )
            raise

        patterns = self._detect_patterns(timing, parallelism, cache)
        insights = self._generate_insights(timing, parallelism, cache, dependencies, tests)
        impact_scores = self._calculate_impact_scores(insights)

        analysis = {
            "pipeline_id": snapshot.pipeline_id,
            "project_id": snapshot.project_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metrics": {
                "duration": pipeline.get("duration"),
                "job_count": len(jobs),
                "success_rate": self._calculate_success_rate(jobs),
                **timing["summary"],
                **parallelism["summary"],
            },
            "analyses": {
                "timing": timing,
                "parallelism": parallelism,
                "cache": cache,
                "dependencies": dependencies,
                "tests": tests,
            },
            "patterns": patterns,
            "insights": insights,
            "impact_scores": impact_scores,
            "optimizations": self._extract_optimizations(insights, impact_scores),
        }

        logger.info(
            "Analysis complete for pipeline %s: %d optimizations",
            snapshot.pipeline_id, len(analysis["optimizations"]),
        )
        return analysis

    async def _fetch_dependencies(self, project_id) -> list[dict] | None:
        if not self.deep_scan_enabled:
            return None
        return await self.client.get_dependencies(project_id)

    # ── Sub-analyses ─────────────────────────────────────────────────────────

    async def _analyze_timing(self, pipeline: dict, jobs: list[dict]) -> dict:
        total_duration = pipeline.get("duration") or 0

        if jobs:
            avg_job_duration = sum(_duration(j) for j in jobs) / len(jobs)
            # max/min keep the first job on ties
            longest = max(jobs, key=_duration)
            shortest = min(jobs, key=_duration)
        else:
            avg_job_duration = 0
            longest = shortest = None

        bottlenecks = [
            {
                "job": j.get("name"),
                "duration": _duration(j),
                "impact": round(_duration(j) / total_duration * 100, 2) if total_duration else 0,
            }
            for j in jobs
            if _duration(j) > avg_job_duration * coef.BOTTLENECK_MULTIPLIER
        ]

        waiting_total, waiting_periods = self._detect_waiting_periods(jobs)

        recommendations = []
        if bottlenecks:
            recommendations.append({
                "type": "split_job",
                "target": bottlenecks[0]["job"],
                "reason": "Job is a bottleneck",
            })

        return {
            "summary": {
                "total_duration": total_duration,
                "avg_job_duration": round(avg_job_duration),
                "longest_job": longest.get("name") if longest is not None else None,
                "longest_job_duration": _duration(longest) if longest is not None else None,
                "shortest_job": shortest.get("name") if shortest is not None else None,
                "shortest_job_duration": _duration(shortest) if shortest is not None else None,
                "bottleneck_count": len(bottlenecks),
                "waiting_time_total": waiting_total,
            },
            "bottlenecks": bottlenecks,
            "waiting_periods": waiting_periods,
            "recommendations": recommendations,
        }

    async def _analyze_parallelism(self, jobs: list[dict]) -> dict:
        stages: dict[str, list[dict]] = {}
        for job in jobs:
            stages.setdefault(job.get("stage") or "default", []).append(job)

        max_parallel = self.max_parallel_per_stage
        stage_metrics: dict[str, dict] = {}
        for stage, stage_jobs in stages.items():
            count = len(stage_jobs)
            if max_parallel > 0:
                efficiency = round(count / max_parallel * 100)
                underutilized = count < max_parallel
            else:
                # No parallel capacity: nothing to gain, treat as fully used
                efficiency = 100
                underutilized = False
            stage_metrics[stage] = {
                "job_count": count,
                "max_parallel": max_parallel,
                "efficiency": efficiency,
                "underutilized": underutilized,
            }

        opportunities = [
            {
                "stage": stage,
                "current_jobs": m["job_count"],
                "max_possible": m["max_parallel"],
                "gain_estimate": (m["max_parallel"] - m["job_count"]) * coef.PARALLEL_SLOT_GAIN_SECONDS,
            }
            for stage, m in stage_metrics.items()
            if m["underutilized"]
        ]

        stage_count = len(stage_metrics)
        total_jobs = sum(m["job_count"] for m in stage_metrics.values())
        return {
            "summary": {
                "avg_parallelism": round(total_jobs / stage_count) if stage_count else 0,
                "total_stages": stage_count,
                "underutilized_stages": len(opportunities),
                "max_parallelism": max((m["job_count"] for m in stage_metrics.values()), default=0),
            },
            "stages": stage_metrics,
            "opportunities": opportunities,
            "recommendations": [
                {
                    "type": "increase_parallel",
                    "stage": o["stage"],
                    "current": o["current_jobs"],
                    "target": o["max_possible"],
                    "reason": "Underutilized parallelism",
                }
                for o in opportunities
            ],
        }

    async def _analyze_caching(self, jobs: list[dict]) -> dict:
        cache_jobs = [
            j for j in jobs
            if j.get("name") and ("cache" in j["name"] or "restore" in j["name"])
        ]

        hits = misses = 0
        total_cache_time = 0
        for job in cache_jobs:
            if job.get("status") != "success":
                continue
            if _duration(job) < coef.CACHE_HIT_MAX_SECONDS:
                hits += 1
            else:
                misses += 1
            total_cache_time += _duration(job)

        operations = hits + misses
        hit_rate = hits / operations * 100 if operations else 0

        recommendations = []
        if hit_rate < coef.CACHE_INEFFICIENCY_HIT_RATE:
            recommendations.append({
                "type": "cache_keys",
                "reason": "Poor cache hit rate",
                "solution": "Review cache key strategy",
            })

        return {
            "summary": {
                "hit_rate": round(hit_rate),
                "total_cache_operations": operations,
                "cache_hits": hits,
                "cache_misses": misses,
                "total_cache_time": total_cache_time,
                "average_cache_time": total_cache_time / operations if operations else 0,
            },
            "cache_jobs": [j.get("name") for j in cache_jobs],
            "recommendations": recommendations,
        }

    async def _analyze_dependencies(self, dependency_data: list[dict] | None) -> dict:
        if not dependency_data:
            return {"scanned": dependency_data is not None, "total": 0,
                    "outdated_dependencies": [], "vulnerable_count": 0}

        outdated = [
            {
                "name": d.get("name"),
                "version": d.get("version"),
                "latest_version": d.get("latest_version"),
                "package_manager": d.get("package_manager"),
            }
            for d in dependency_data
            if d.get("outdated")
            or (d.get("latest_version") and d.get("latest_version") != d.get("version"))
        ]
        return {
            "scanned": True,
            "total": len(dependency_data),
            "outdated_dependencies": outdated,
            "vulnerable_count": sum(1 for d in dependency_data if d.get("vulnerabilities")),
        }

    async def _analyze_tests(self, test_reports: dict | None, jobs: list[dict]) -> dict:
        test_jobs = [j.get("name") for j in jobs if j.get("stage") == "test"]
        if not test_reports:
            return {"total": 0, "failed": 0, "success_rate": None,
                    "total_time": 0, "test_jobs": test_jobs, "suites": []}

        total = test_reports.get("total_count") or 0
        failed = (test_reports.get("failed_count") or 0) + (test_reports.get("error_count") or 0)
        success = test_reports.get("success_count") or 0
        return {
            "total": total,
            "failed": failed,
            "success_rate": round(success / total * 100, 2) if total else None,
            "total_time": test_reports.get("total_time") or 0,
            "test_jobs": test_jobs,
            "suites": [
                {
                    "name": s.get("name"),
                    "total_count": s.get("total_count", 0),
                    "failed_count": s.get("failed_count", 0),
                    "total_time": s.get("total_time", 0),
                }
                for s in test_reports.get("test_suites") or []
            ],
        }

    # ── Patterns, insights, ranking ──────────────────────────────────────────

    @staticmethod
    def _detect_patterns(timing: dict, parallelism: dict, cache: dict) -> list[dict]:
        patterns = []
        if parallelism["opportunities"]:
            patterns.append({
                "type": "parallelization_opportunity",
                "severity": "high",
                "description": "Jobs running sequentially that could be parallelized",
                "instances": parallelism["opportunities"],
            })
        if cache["summary"]["hit_rate"] < coef.CACHE_INEFFICIENCY_HIT_RATE:
            patterns.append({
                "type": "cache_inefficiency",
                "severity": "high",
                "description": "Low cache hit rate causing rebuilds",
                "metrics": cache["summary"],
            })
        if timing["bottlenecks"]:
            patterns.append({
                "type": "bottleneck",
                "severity": "medium",
                "description": "Single jobs dominating pipeline time",
                "instances": timing["bottlenecks"],
            })
        avg_parallelism = parallelism["summary"]["avg_parallelism"]
        if avg_parallelism < coef.UNDERUTILIZATION_AVG_PARALLELISM:
            patterns.append({
                "type": "underutilization",
                "severity": "medium",
                "description": "Runners are idle while jobs wait",
                "metrics": {"avg_parallelism": avg_parallelism},
            })
        return patterns

    @staticmethod
    def _generate_insights(
        timing: dict, parallelism: dict, cache: dict, dependencies: dict, tests: dict,
    ) -> list[dict]:
        insights: list[dict[str, Any]] = []

        if timing["bottlenecks"]:
            names = ", ".join(str(b["job"]) for b in timing["bottlenecks"])
            insights.append({
                "category": "performance",
                "title": "Pipeline bottlenecks detected",
                "description": f"The following jobs are slowing down your pipeline: {names}",
                "impact": "high",
                "actionable": True,
            })

        if parallelism["opportunities"]:
            savings = sum(o["gain_estimate"] for o in parallelism["opportunities"])
            insights.append({
                "category": "parallelization",
                "title": "Parallelization opportunities",
                "description": f"Running more jobs in parallel could save ~{savings}s per pipeline",
                "impact": "medium",
                "actionable": True,
                "savings": savings,
            })

        hit_rate = cache["summary"]["hit_rate"]
        if hit_rate < coef.CACHE_INSIGHT_HIT_RATE:
            insights.append({
                "category": "caching",
                "title": "Cache optimization needed",
                "description": (
                    f"Cache hit rate is {hit_rate}%. "
                    "Improving this could significantly speed up builds"
                ),
                "impact": "high",
                "actionable": True,
            })

        outdated = dependencies["outdated_dependencies"]
        if outdated:
            insights.append({
                "category": "dependencies",
                "title": "Outdated dependencies",
                "description": f"{len(outdated)} dependencies could be updated to improve build times",
                "impact": "low",
                "actionable": True,
            })

        if tests["failed"]:
            insights.append({
                "category": "tests",
                "title": "Failing tests",
                "description": (
                    f"{tests['failed']} of {tests['total']} tests failed; "
                    "failed runs waste the energy of the whole pipeline"
                ),
                "impact": "low",
                "actionable": True,
            })

        return insights

    @staticmethod
    def _calculate_impact_scores(insights: list[dict]) -> dict:
        scores = {"total_potential_savings": 0, "priority_optimizations": [], "quick_wins": []}
        for insight in insights:
            if not insight.get("actionable"):
                continue
            if insight["impact"] == "high":
                scores["priority_optimizations"].append(insight)
            savings = insight.get("savings")
            if savings and savings < coef.QUICK_WIN_MAX_SAVINGS_SECONDS:
                scores["quick_wins"].append(insight)
            scores["total_potential_savings"] += savings or 0
        return scores

    @staticmethod
    def _extract_optimizations(insights: list[dict], impact_scores: dict) -> list[dict]:
        priority_ids = {id(i) for i in impact_scores["priority_optimizations"]}
        return [
            {
                "id": f"opt-{uuid4().hex[:12]}",
                "title": insight["title"],
                "description": insight["description"],
                "category": insight["category"],
                "impact": insight["impact"],
                "estimated_savings": insight.get("savings"),
                "priority": "high" if id(insight) in priority_ids else "medium",
                "automated": insight["category"] in coef.AUTOMATABLE_CATEGORIES,
            }
            for insight in insights
            if insight.get("actionable")
        ]

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _detect_waiting_periods(jobs: list[dict]) -> tuple[float, list[dict]]:
        """Gaps where no job was running between the first start and the last finish."""
        spans = []
        for job in jobs:
            start, end = _parse_ts(job.get("started_at")), _parse_ts(job.get("finished_at"))
            if start and end:
                spans.append((start, end, job.get("name")))
        spans.sort(key=lambda s: s[0])

        periods = []
        latest_end = None
        for start, end, name in spans:
            if latest_end is not None and start > latest_end:
                periods.append({
                    "before_job": name,
                    "seconds": (start - latest_end).total_seconds(),
                })
            if latest_end is None or end > latest_end:
                latest_end = end
        return sum(p["seconds"] for p in periods), periods

    @staticmethod
    def _calculate_success_rate(jobs: list[dict]) -> float:
        if not jobs:
            return 0
        successful = sum(1 for j in jobs if j.get("status") == "success")
        return successful / len(jobs) * 100
