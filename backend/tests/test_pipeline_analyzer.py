"""Tests for the pipeline analyzer."""

import pytest

from greenci.analyzer import PipelineAnalyzer, PipelineSnapshot
from greenci.errors import UpstreamFetchError
from tests.conftest import sample_jobs


class StaticSource:
    """PipelineSource returning fixed data; optionally failing one call."""

    def __init__(self, pipeline, jobs, test_reports=None, dependencies=None, fail_on=None):
        self.pipeline = pipeline
        self.jobs = jobs
        self.test_reports = test_reports
        self.dependencies = dependencies
        self.fail_on = fail_on
        self.calls: list[str] = []

    def _maybe_fail(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise UpstreamFetchError(f"{name} failed", status=500)

    async def get_pipeline(self, project_id, pipeline_id):
        self._maybe_fail("pipeline")
        return self.pipeline

    async def get_pipeline_jobs(self, project_id, pipeline_id):
        self._maybe_fail("jobs")
        return self.jobs

    async def get_test_reports(self, project_id, pipeline_id):
        self._maybe_fail("test_reports")
        return self.test_reports

    async def get_dependencies(self, project_id):
        self._maybe_fail("dependencies")
        return self.dependencies


def _snapshot(jobs, duration=600, **kwargs) -> PipelineSnapshot:
    return PipelineSnapshot(project_id=1, pipeline_id=2, pipeline={"duration": duration}, jobs=jobs, **kwargs)


@pytest.mark.asyncio
class TestAnalyzePipeline:
    async def test_single_job_has_no_bottleneck(self):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 100}, [{"name": "build", "stage": "build", "duration": 100}]))
        result = await analyzer.analyze_pipeline(1, 2)
        assert result["analyses"]["timing"]["bottlenecks"] == []
        assert result["metrics"]["bottleneck_count"] == 0
        assert result["metrics"]["avg_parallelism"] == 1

    async def test_result_shape(self):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs()))
        result = await analyzer.analyze_pipeline(1, 2)
        assert set(result) == {
            "pipeline_id", "project_id", "timestamp", "metrics", "analyses",
            "patterns", "insights", "impact_scores", "optimizations",
        }
        assert set(result["analyses"]) == {"timing", "parallelism", "cache", "dependencies", "tests"}
        assert result["metrics"]["job_count"] == 4
        assert result["metrics"]["success_rate"] == 75

    async def test_bottleneck_detection(self):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs()))
        result = await analyzer.analyze_pipeline(1, 2)
        timing = result["analyses"]["timing"]
        # average job duration is 131.25s; only build exceeds twice that
        assert [b["job"] for b in timing["bottlenecks"]] == ["build"]
        assert timing["summary"]["longest_job"] == "build"
        assert timing["summary"]["shortest_job"] == "lint"
        assert "bottleneck" in [p["type"] for p in result["patterns"]]

    async def test_waiting_periods(self):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs()))
        result = await analyzer.analyze_pipeline(1, 2)
        timing = result["analyses"]["timing"]
        assert timing["waiting_periods"] == [{"before_job": "build", "seconds": 15.0}]
        assert timing["summary"]["waiting_time_total"] == 15.0

    async def test_cache_analysis(self):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs()))
        result = await analyzer.analyze_pipeline(1, 2)
        cache = result["analyses"]["cache"]["summary"]
        assert cache["cache_misses"] == 1
        assert cache["hit_rate"] == 0
        categories = [o["category"] for o in result["optimizations"]]
        assert "caching" in categories

    async def test_optimizations_ranked_and_flagged(self):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs()))
        result = await analyzer.analyze_pipeline(1, 2)
        by_category = {o["category"]: o for o in result["optimizations"]}
        assert by_category["caching"]["priority"] == "high"
        assert by_category["caching"]["automated"] is True
        assert by_category["performance"]["automated"] is False
        assert by_category["parallelization"]["automated"] is True
        assert all(o["id"].startswith("opt-") for o in result["optimizations"])

    async def test_failing_tests_insight(self):
        report = {"total_count": 20, "success_count": 17, "failed_count": 2, "error_count": 1}
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs(), test_reports=report))
        result = await analyzer.analyze_pipeline(1, 2)
        assert result["analyses"]["tests"]["failed"] == 3
        assert result["analyses"]["tests"]["success_rate"] == 85.0
        tests_insight = [i for i in result["insights"] if i["category"] == "tests"]
        assert tests_insight and tests_insight[0]["impact"] == "low"

    async def test_dependencies_only_fetched_on_deep_scan(self):
        deps = [
            {"name": "requests", "version": "2.0.0", "latest_version": "2.32.0"},
            {"name": "httpx", "version": "0.27.0", "latest_version": "0.27.0"},
        ]
        shallow_source = StaticSource({"duration": 600}, sample_jobs(), dependencies=deps)
        shallow = await PipelineAnalyzer(shallow_source).analyze_pipeline(1, 2)
        assert "dependencies" not in shallow_source.calls
        assert shallow["analyses"]["dependencies"]["scanned"] is False

        deep_source = StaticSource({"duration": 600}, sample_jobs(), dependencies=deps)
        deep = await PipelineAnalyzer(deep_source, deep_scan_enabled=True).analyze_pipeline(1, 2)
        outdated = deep["analyses"]["dependencies"]["outdated_dependencies"]
        assert [d["name"] for d in outdated] == ["requests"]
        assert "dependencies" in [i["category"] for i in deep["insights"]]

    @pytest.mark.parametrize("fail_on", ["pipeline", "jobs", "test_reports"])
    async def test_fetch_failure_aborts(self, fail_on):
        analyzer = PipelineAnalyzer(StaticSource({"duration": 600}, sample_jobs(), fail_on=fail_on))
        with pytest.raises(UpstreamFetchError):
            await analyzer.analyze_pipeline(1, 2)


@pytest.mark.asyncio
class TestAnalyzeSnapshot:
    async def test_empty_jobs(self):
        analyzer = PipelineAnalyzer(StaticSource({}, []))
        result = await analyzer.analyze_snapshot(_snapshot([]))
        summary = result["analyses"]["timing"]["summary"]
        assert summary["longest_job"] is None
        assert summary["shortest_job"] is None
        assert summary["avg_job_duration"] == 0
        assert result["metrics"]["avg_parallelism"] == 0
        assert result["metrics"]["success_rate"] == 0

    async def test_parallel_capacity_is_configurable(self):
        jobs = [{"name": f"t{i}", "stage": "test", "duration": 10} for i in range(3)]
        analyzer = PipelineAnalyzer(StaticSource({}, []), max_parallel_per_stage=4)
        result = await analyzer.analyze_snapshot(_snapshot(jobs))
        stage = result["analyses"]["parallelism"]["stages"]["test"]
        assert stage["efficiency"] == 75
        assert result["analyses"]["parallelism"]["opportunities"][0]["gain_estimate"] == 30

    async def test_zero_parallel_capacity_is_not_underutilized(self):
        jobs = [{"name": "t", "stage": "test", "duration": 10}]
        analyzer = PipelineAnalyzer(StaticSource({}, []), max_parallel_per_stage=0)
        result = await analyzer.analyze_snapshot(_snapshot(jobs))
        stage = result["analyses"]["parallelism"]["stages"]["test"]
        assert stage["efficiency"] == 100
        assert stage["underutilized"] is False
        assert result["analyses"]["parallelism"]["opportunities"] == []

    async def test_jobs_without_stage_grouped_as_default(self):
        analyzer = PipelineAnalyzer(StaticSource({}, []))
        result = await analyzer.analyze_snapshot(_snapshot([{"name": "a", "duration": 5}]))
        assert list(result["analyses"]["parallelism"]["stages"]) == ["default"]

    async def test_timestamps_without_offset_are_utc(self):
        jobs = [
            {"name": "build", "stage": "build", "duration": 60,
             "started_at": "2026-05-01T10:00:00Z", "finished_at": "2026-05-01T10:01:00Z"},
            {"name": "test", "stage": "test", "duration": 30,
             "started_at": "2026-05-01T10:01:20", "finished_at": "2026-05-01T10:01:50"},
        ]
        analyzer = PipelineAnalyzer(StaticSource({}, []))
        result = await analyzer.analyze_snapshot(_snapshot(jobs))
        timing = result["analyses"]["timing"]
        assert timing["waiting_periods"] == [{"before_job": "test", "seconds": 20.0}]
