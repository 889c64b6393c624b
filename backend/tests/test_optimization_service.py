"""Tests for the optimization lifecycle and project/metric services on SQLite."""

import pytest

from greenci.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from greenci.services.metrics_service import MetricsService
from greenci.services.optimization_service import OptimizationService, VALID_TRANSITIONS
from greenci.services.project_service import ProjectService


@pytest.mark.asyncio
class TestOptimizationLifecycle:
    async def test_create_registers_project(self, db_session):
        service = OptimizationService(db_session)
        opt = await service.create_optimization("42", "Enable caching", "Cache node_modules", type="caching")
        assert opt.status == "pending"
        assert opt.project.gitlab_project_id == "42"
        assert opt.project.name == "Project-42"
        assert opt.estimated_savings_kg == 0.0

    async def test_apply_complete(self, db_session):
        service = OptimizationService(db_session)
        opt = await service.create_optimization("42", "Enable caching", "desc")

        opt = await service.apply(opt.id, mr_url="https://gitlab.test/mr/1")
        assert opt.status == "in_progress"
        assert opt.applied_at is not None
        assert opt.mr_url == "https://gitlab.test/mr/1"

        opt = await service.complete(opt.id)
        assert opt.status == "completed"
        assert opt.completed_at is not None

    async def test_completed_can_be_reported_broken(self, db_session):
        service = OptimizationService(db_session)
        opt = await service.create_optimization("42", "Enable caching", "desc", metadata={"kind": "manual"})
        await service.apply(opt.id)
        await service.complete(opt.id)
        opt = await service.fail(opt.id, "Build broke after merge")
        assert opt.status == "failed"
        assert opt.meta["kind"] == "failure"
        assert opt.meta["error"] == "Build broke after merge"
        assert opt.meta["extra"]["previous"] == {"kind": "manual"}

    @pytest.mark.parametrize("path,target", [
        ([], "completed"),
        ([], "failed"),
        (["in_progress"], "pending"),
        (["in_progress", "failed"], "in_progress"),
        (["in_progress", "completed"], "in_progress"),
    ])
    async def test_invalid_transitions(self, db_session, path, target):
        service = OptimizationService(db_session)
        opt = await service.create_optimization("42", "t", "d")
        for status in path:
            await service.update_status(opt.id, status)
        with pytest.raises(InvalidTransitionError):
            await service.update_status(opt.id, target)

    async def test_failed_is_terminal(self):
        assert VALID_TRANSITIONS["failed"] == set()

    async def test_missing_optimization(self, db_session):
        with pytest.raises(NotFoundError):
            await OptimizationService(db_session).get_optimization(12345)

    async def test_filters_and_stats(self, db_session):
        service = OptimizationService(db_session)
        a = await service.create_optimization("1", "a", "d", impact="high", estimated_savings_kg=0.5)
        await service.create_optimization("1", "b", "d", impact="low")
        await service.create_optimization("2", "c", "d", impact="high", estimated_savings_kg=0.2)
        await service.apply(a.id)
        await service.complete(a.id)

        assert [o.title for o in await service.list_optimizations(gitlab_project_id="1", impact="high")] == ["a"]
        assert {o.title for o in await service.list_optimizations(status="pending")} == {"b", "c"}
        assert len(await service.list_optimizations(limit=2)) == 2

        stats = await service.get_stats()
        assert stats == {
            "total": 3, "pending": 2, "in_progress": 0, "completed": 1, "failed": 0, "total_savings": 0.5,
        }


@pytest.mark.asyncio
class TestProjectsAndMetrics:
    async def test_duplicate_project_conflicts(self, db_session):
        service = ProjectService(db_session)
        await service.create_project("42", "App")
        with pytest.raises(ConflictError):
            await service.create_project("42", "Other")

    async def test_metric_computed_from_raw_jobs(self, db_session):
        jobs = [{"name": "cache-deps", "status": "success", "duration": 10}]
        metric = await MetricsService(db_session).create_metric("42", "p-1", 600, jobs=jobs)
        assert metric.eco_score == 95
        assert metric.grade == "A"
        assert metric.job_count == 1
        assert metric.co2_kg > 0

    async def test_metric_grade_derived_from_supplied_score(self, db_session):
        metric = await MetricsService(db_session).create_metric(
            "42", "p-1", 600, job_count=3, energy_kwh=0.1, co2_kg=0.05, eco_score=74,
        )
        assert metric.grade == "C"
        assert metric.energy_kwh == 0.1

    async def test_history_feeds_trend_penalty(self, db_session):
        service = MetricsService(db_session)
        await service.create_metric("42", "p-1", 100, job_count=1, energy_kwh=0.1, co2_kg=0.05, eco_score=100)
        jobs = [{"name": f"job-{i}", "status": "success", "duration": 50} for i in range(12)]
        metric = await service.create_metric("42", "p-2", 1200, jobs=jobs)
        assert metric.eco_score == 51

    async def test_summary_and_delete(self, db_session):
        service = MetricsService(db_session)
        m1 = await service.create_metric("1", "p-1", 600, job_count=1, energy_kwh=0.2, co2_kg=0.1, eco_score=80)
        await service.create_metric("2", "p-2", 600, job_count=1, energy_kwh=0.2, co2_kg=0.3, eco_score=60)

        summary = await service.get_summary()
        assert summary == {
            "total_pipelines": 2, "total_co2": 0.4, "total_energy": 0.4, "average_score": 70, "projects": 2,
        }

        await service.delete_metric(m1.id)
        assert (await service.get_summary())["total_pipelines"] == 1
        with pytest.raises(NotFoundError):
            await service.delete_metric(m1.id)

    async def test_range_rejects_inverted_dates(self, db_session):
        from datetime import datetime

        with pytest.raises(ValidationError):
            await MetricsService(db_session).metrics_in_range(datetime(2026, 2, 1), datetime(2026, 1, 1))

    async def test_delete_project_removes_children(self, db_session):
        await MetricsService(db_session).create_metric("42", "p-1", 600, job_count=1, energy_kwh=0.1, co2_kg=0.1, eco_score=90)
        await OptimizationService(db_session).create_optimization("42", "t", "d")
        projects = ProjectService(db_session)
        project = await projects.get_by_gitlab_id("42")
        await projects.delete_project(project.id)
        assert await MetricsService(db_session).list_metrics() == []
        assert await OptimizationService(db_session).list_optimizations() == []
