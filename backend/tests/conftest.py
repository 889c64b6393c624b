"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time; point them at throwaway backends first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["GITLAB_URL"] = "https://gitlab.test/api/v4"
os.environ["GITLAB_TOKEN"] = "glpat-test"
os.environ["API_KEYS"] = (
    "admin-key:admin,operator-key:operator,viewer-key:viewer,agent-key:agent"
)

import re
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from greenci.api.deps import get_db, get_dispatcher, get_gitlab_client
from greenci.clients.gitlab_client import GitLabClient
from greenci.database import Base
from greenci.main import app
import greenci.models  # noqa: F401


API_KEYS = {
    "admin": "admin-key",
    "operator": "operator-key",
    "viewer": "viewer-key",
    "agent": "agent-key",
}


# ── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """One session per test, shared by every request the test makes."""
    TestSession = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with TestSession() as session:
        yield session


def _override_db(session: AsyncSession):
    """Create a dependency override for get_db."""
    async def _get_db():
        yield session
    return _get_db


# ── Fake GitLab ──────────────────────────────────────────────────────────────

class FakeGitLab:
    """In-memory GitLab v4 API served through httpx.MockTransport."""

    def __init__(self):
        self.pipelines: dict[tuple[str, str], dict] = {}
        self.jobs: dict[tuple[str, str], list[dict]] = {}
        self.test_reports: dict[tuple[str, str], dict] = {}
        self.dependencies: dict[str, list[dict]] = {}
        self.jobs_page_size = 100
        self.fail_status: int | None = None
        self.requests: list[httpx.Request] = []
        self.merge_requests: list[dict] = []

    def add_pipeline(self, project_id, pipeline_id, pipeline: dict, jobs: list[dict], test_report=None):
        key = (str(project_id), str(pipeline_id))
        self.pipelines[key] = {"id": pipeline_id, **pipeline}
        self.jobs[key] = jobs
        if test_report is not None:
            self.test_reports[key] = test_report

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status:
            return httpx.Response(self.fail_status, json={"message": "boom"})

        path = request.url.path.removeprefix("/api/v4")
        if m := re.fullmatch(r"/projects/([^/]+)/pipelines/([^/]+)/jobs", path):
            jobs = self.jobs.get((m[1], m[2]))
            if jobs is None:
                return httpx.Response(404, json={"message": "404 Not found"})
            page = int(request.url.params.get("page", "1"))
            size = self.jobs_page_size
            batch = jobs[(page - 1) * size: page * size]
            headers = {"X-Next-Page": str(page + 1) if page * size < len(jobs) else ""}
            return httpx.Response(200, json=batch, headers=headers)
        if m := re.fullmatch(r"/projects/([^/]+)/pipelines/([^/]+)/test_report", path):
            report = self.test_reports.get((m[1], m[2]))
            return httpx.Response(200, json=report) if report else httpx.Response(404)
        if m := re.fullmatch(r"/projects/([^/]+)/pipelines/([^/]+)", path):
            pipeline = self.pipelines.get((m[1], m[2]))
            return httpx.Response(200, json=pipeline) if pipeline else httpx.Response(404)
        if m := re.fullmatch(r"/projects/([^/]+)/dependencies", path):
            deps = self.dependencies.get(m[1])
            return httpx.Response(200, json=deps) if deps is not None else httpx.Response(404)
        if re.fullmatch(r"/projects/([^/]+)/repository/branches", path):
            return httpx.Response(201, json={"name": "branch"})
        if re.fullmatch(r"/projects/([^/]+)/repository/commits", path):
            return httpx.Response(201, json={"id": "abc123"})
        if m := re.fullmatch(r"/projects/([^/]+)/merge_requests", path):
            iid = len(self.merge_requests) + 1
            mr = {"iid": iid, "web_url": f"https://gitlab.test/{m[1]}/-/merge_requests/{iid}"}
            self.merge_requests.append(mr)
            return httpx.Response(201, json=mr)
        return httpx.Response(404, json={"message": "404 Not found"})

    def client(self) -> GitLabClient:
        return GitLabClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def gitlab() -> FakeGitLab:
    return FakeGitLab()


# ── In-memory job dispatcher ─────────────────────────────────────────────────

class InMemoryDispatcher:
    def __init__(self):
        self.queue: list[dict] = []
        self.jobs: dict[str, dict] = {}
        self.fail = False

    async def enqueue_agent_run(self, job_id: str, agent_name: str, params: dict) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.queue.append({"job_id": job_id, "agent": agent_name, "params": params})
        self.jobs[job_id] = {"job_id": job_id, "agent": agent_name, "status": "queued"}

    async def get_job_status(self, job_id: str) -> dict | None:
        return self.jobs.get(job_id)

    async def update_job_status(self, job_id: str, *, status: str, result: dict | None = None) -> None:
        job = self.jobs.setdefault(job_id, {"job_id": job_id})
        job["status"] = status
        if result:
            job["result"] = result


@pytest.fixture
def dispatcher() -> InMemoryDispatcher:
    return InMemoryDispatcher()


# ── HTTP clients ─────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def make_client(db_session: AsyncSession, gitlab: FakeGitLab, dispatcher: InMemoryDispatcher):
    """Factory for HTTP clients authenticated with a role's API key (None = anonymous)."""
    async def _get_gitlab_client():
        client = gitlab.client()
        try:
            yield client
        finally:
            await client.aclose()

    app.dependency_overrides[get_db] = _override_db(db_session)
    app.dependency_overrides[get_gitlab_client] = _get_gitlab_client
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    clients: list[AsyncClient] = []

    def _make(role: str | None = "admin") -> AsyncClient:
        headers = {"X-API-Key": API_KEYS[role]} if role else {}
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers=headers)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_client(make_client) -> AsyncClient:
    return make_client("admin")


@pytest_asyncio.fixture
async def viewer_client(make_client) -> AsyncClient:
    return make_client("viewer")


@pytest_asyncio.fixture
async def agent_client(make_client) -> AsyncClient:
    return make_client("agent")


@pytest_asyncio.fixture
async def anon_client(make_client) -> AsyncClient:
    return make_client(None)


# ── Sample data ──────────────────────────────────────────────────────────────

def sample_jobs() -> list[dict]:
    """A small pipeline: cold cache, one slow build, two tests."""
    return [
        {"name": "cache-restore", "stage": "prepare", "status": "success", "duration": 45,
         "started_at": "2026-01-01T10:00:00Z", "finished_at": "2026-01-01T10:00:45Z"},
        {"name": "build", "stage": "build", "status": "success", "duration": 400,
         "started_at": "2026-01-01T10:01:00Z", "finished_at": "2026-01-01T10:07:40Z"},
        {"name": "unit-tests", "stage": "test", "status": "success", "duration": 60,
         "started_at": "2026-01-01T10:07:40Z", "finished_at": "2026-01-01T10:08:40Z"},
        {"name": "lint", "stage": "test", "status": "failed", "duration": 20,
         "started_at": "2026-01-01T10:07:40Z", "finished_at": "2026-01-01T10:08:00Z"},
    ]
