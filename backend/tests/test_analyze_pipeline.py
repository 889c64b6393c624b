"""Tests for the in-CI analysis script."""

import json

import httpx
import pytest
from httpx import ASGITransport

from analyze_pipeline import analyze, main, metric_payload, post_to_dashboard
from greenci.config import settings
from greenci.main import app
from greenci.schemas.schemas import MetricCreate
from tests.conftest import sample_jobs


@pytest.fixture
def dashboard(monkeypatch):
    monkeypatch.setattr(settings, "dashboard_url", "http://test/")
    monkeypatch.setattr(settings, "dashboard_api_key", "agent-key")


@pytest.mark.asyncio
class TestAnalyze:
    async def test_result_shape(self, gitlab):
        gitlab.add_pipeline(42, 7, {"duration": 600, "status": "success"}, sample_jobs())
        async with gitlab.client() as client:
            result = await analyze("42", "7", client)

        assert result["project_id"] == "42"
        assert result["duration"] == 600
        assert result["job_count"] == 4
        assert result["eco_score"] == result["score"]["score"]
        assert result["co2_kg"] == result["footprint"]["co2_kg"]
        assert result["has_optimizations"] is True

    async def test_payload_is_a_valid_metric(self, gitlab):
        gitlab.add_pipeline(42, 7, {"duration": 600}, sample_jobs())
        async with gitlab.client() as client:
            result = await analyze("42", "7", client)

        body = MetricCreate.model_validate(metric_payload(result))
        assert body.metadata.kind == "analysis"
        assert body.metadata.extra["source"] == "ci"
        assert "bottleneck" in body.metadata.extra["patterns"]

    async def test_post_to_dashboard(self, gitlab, dashboard):
        gitlab.add_pipeline(42, 7, {"duration": 600}, sample_jobs())
        async with gitlab.client() as client:
            result = await analyze("42", "7", client)

        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(201, json={"id": 1})

        await post_to_dashboard(result, transport=httpx.MockTransport(handler))

        assert str(captured[0].url) == "http://test/api/metrics"
        assert captured[0].headers["X-API-Key"] == "agent-key"
        assert json.loads(captured[0].content)["eco_score"] == result["eco_score"]

    async def test_post_is_accepted_by_the_api(self, make_client, gitlab, dashboard):
        make_client("agent")  # installs the test database override
        gitlab.add_pipeline(42, 7, {"duration": 600}, sample_jobs())
        async with gitlab.client() as client:
            result = await analyze("42", "7", client)

        await post_to_dashboard(result, transport=ASGITransport(app=app))

        viewer = make_client("viewer")
        metrics = (await viewer.get("/api/metrics/project/42")).json()
        assert len(metrics) == 1
        assert metrics[0]["eco_score"] == result["eco_score"]
        assert metrics[0]["metadata"]["kind"] == "analysis"

    async def test_dashboard_rejection_raises(self, gitlab, dashboard):
        gitlab.add_pipeline(42, 7, {"duration": 600}, sample_jobs())
        async with gitlab.client() as client:
            result = await analyze("42", "7", client)

        transport = httpx.MockTransport(lambda request: httpx.Response(403, json={"detail": "nope"}))
        with pytest.raises(httpx.HTTPStatusError):
            await post_to_dashboard(result, transport=transport)

    async def test_main_requires_pipeline_context(self, monkeypatch):
        monkeypatch.delenv("CI_PROJECT_ID", raising=False)
        monkeypatch.delenv("CI_PIPELINE_ID", raising=False)
        assert await main() == 1
