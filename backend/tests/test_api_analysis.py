"""API tests for the stateless carbon endpoints and end-to-end pipeline analysis."""

import pytest

from tests.conftest import sample_jobs


def _long_pipeline_jobs() -> list[dict]:
    return [{"name": f"job-{i}", "stage": "test", "status": "success", "duration": 50} for i in range(12)]


# ── Carbon calculator ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestCarbonEndpoints:
    async def test_footprint(self, viewer_client):
        resp = await viewer_client.post("/api/carbon/footprint", json={"pipeline": {"duration": 3600}, "jobs": []})
        assert resp.status_code == 200
        body = resp.json()
        # 50 W for an hour on the global average grid
        assert body["energy_kwh"] == pytest.approx(0.05)
        assert body["co2_kg"] == pytest.approx(0.05 * 0.475)
        assert body["breakdown"]["efficiency_factor"] == 1.0
        assert body["confidence"] == pytest.approx(0.3)

    async def test_footprint_rejects_out_of_range_duration(self, viewer_client):
        resp = await viewer_client.post("/api/carbon/footprint", json={"pipeline": {"duration": 86401}})
        assert resp.status_code == 422
        assert resp.json()["details"] == {"duration": 86401}

        resp = await viewer_client.post("/api/carbon/footprint", json={
            "pipeline": {"duration": 60}, "jobs": [{"name": "build", "duration": -5}],
        })
        assert resp.status_code == 422

    async def test_eco_score_scenarios(self, viewer_client):
        cached = await viewer_client.post("/api/carbon/eco-score", json={
            "pipeline": {"duration": 600},
            "jobs": [{"name": "cache-deps", "stage": "prepare", "status": "success", "duration": 10}],
        })
        assert (cached.json()["score"], cached.json()["grade"]) == (95, "A")

        slow = await viewer_client.post("/api/carbon/eco-score", json={
            "pipeline": {"duration": 1200}, "jobs": _long_pipeline_jobs(),
        })
        body = slow.json()
        assert (body["score"], body["grade"]) == (56, "D")
        assert {d["factor"] for d in body["deductions"]} == {"duration", "job_count", "cache_efficiency"}
        assert body["recommendations"]

    async def test_eco_score_trend_penalty(self, viewer_client):
        resp = await viewer_client.post("/api/carbon/eco-score", json={
            "pipeline": {"duration": 1200}, "jobs": _long_pipeline_jobs(),
            "historical_data": {"average_score": 100},
        })
        assert resp.json()["score"] == 51

    async def test_predict(self, viewer_client):
        jobs = [{} for _ in range(12)]
        current = (await viewer_client.post("/api/carbon/footprint", json={
            "pipeline": {"duration": 1200}, "jobs": jobs,
        })).json()

        resp = await viewer_client.post("/api/carbon/predict", json={
            "current_metrics": {
                "duration": 1200, "job_count": 12,
                "co2_kg": current["co2_kg"], "energy_kwh": current["energy_kwh"],
            },
            "changes": {"duration_delta": -10, "cache_improvement": True},
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["savings"]["co2_kg"] > 0
        assert 0 < body["savings"]["percentage"] < 100
        assert body["confidence"] == 0.85
        assert body["payback_period_days"] >= 1

    async def test_predict_validation(self, viewer_client):
        resp = await viewer_client.post("/api/carbon/predict", json={
            "current_metrics": {"duration": -1, "job_count": 3},
            "changes": {},
        })
        assert resp.status_code == 422

    async def test_requires_credentials(self, anon_client):
        resp = await anon_client.post("/api/carbon/footprint", json={"pipeline": {"duration": 60}})
        assert resp.status_code == 401


# ── Pipeline analysis ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalysisRun:
    async def test_analysis_persists_metric_and_optimizations(self, make_client, gitlab):
        gitlab.add_pipeline(42, 7, {"duration": 600, "status": "success", "ref": "main", "sha": "abc"}, sample_jobs())
        operator = make_client("operator")

        resp = await operator.post("/api/analysis/run", json={"project_id": "42", "pipeline_id": "7"})
        assert resp.status_code == 201, resp.text
        body = resp.json()

        metric = body["metric"]
        assert metric["gitlab_project_id"] == "42"
        assert metric["pipeline_id"] == "7"
        assert metric["job_count"] == 4
        assert metric["eco_score"] == body["eco_score"]["score"]
        assert metric["co2_kg"] == body["footprint"]["co2_kg"]
        assert metric["metadata"]["kind"] == "analysis"
        assert metric["metadata"]["extra"]["ref"] == "main"

        categories = {o["type"] for o in body["optimizations"]}
        assert {"caching", "performance", "parallelization"} <= categories
        assert all(o["status"] == "pending" for o in body["optimizations"])
        caching = next(o for o in body["optimizations"] if o["type"] == "caching")
        assert caching["metadata"]["automated"] is True
        assert caching["metadata"]["priority"] == "high"

        assert body["analysis"]["metrics"]["job_count"] == 4

        stored = (await operator.get("/api/optimizations?project_id=42")).json()
        assert len(stored) == len(body["optimizations"])

        agent = (await operator.get("/api/agents/green-ci-optimizer")).json()
        assert agent["total_analyses"] == 1
        assert agent["status"] == "idle"

    async def test_gitlab_failure_is_bad_gateway(self, admin_client, gitlab):
        gitlab.fail_status = 500
        resp = await admin_client.post("/api/analysis/run", json={"project_id": "42", "pipeline_id": "7"})
        assert resp.status_code == 502
        assert resp.json()["details"]["status"] == 500
        assert (await admin_client.get("/api/metrics")).json() == []

    async def test_unknown_pipeline_is_bad_gateway(self, admin_client):
        resp = await admin_client.post("/api/analysis/run", json={"project_id": "42", "pipeline_id": "404"})
        assert resp.status_code == 502

    async def test_viewer_cannot_run(self, viewer_client):
        resp = await viewer_client.post("/api/analysis/run", json={"project_id": "42", "pipeline_id": "7"})
        assert resp.status_code == 403
