"""
GitLab REST client (v4) used by the pipeline analyzer and the optimizer agent.

Every transport failure and every non-2xx response surfaces as
UpstreamFetchError. Calls are not retried; the caller decides.
"""

import logging
from urllib.parse import quote

import httpx

from greenci.config import settings
from greenci.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

JOBS_PER_PAGE = 100


class GitLabClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.gitlab_url).rstrip("/")
        headers = {}
        token = token if token is not None else settings.gitlab_token
        if token:
            headers["PRIVATE-TOKEN"] = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or settings.gitlab_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_pipeline(self, project_id: int | str, pipeline_id: int | str) -> dict:
        resp = await self._request("GET", f"/projects/{_pid(project_id)}/pipelines/{pipeline_id}")
        return resp.json()

    async def get_pipeline_jobs(self, project_id: int | str, pipeline_id: int | str) -> list[dict]:
        """All jobs of a pipeline, following GitLab's X-Next-Page pagination."""
        jobs: list[dict] = []
        page = 1
        while page:
            resp = await self._request(
                "GET",
                f"/projects/{_pid(project_id)}/pipelines/{pipeline_id}/jobs",
                params={"per_page": JOBS_PER_PAGE, "page": page},
            )
            batch = resp.json()
            jobs.extend(batch)
            next_page = resp.headers.get("X-Next-Page", "")
            page = int(next_page) if next_page.isdigit() else 0
            if not batch:
                break
        return jobs

    async def get_test_reports(self, project_id: int | str, pipeline_id: int | str) -> dict | None:
        resp = await self._request(
            "GET",
            f"/projects/{_pid(project_id)}/pipelines/{pipeline_id}/test_report",
            allow_404=True,
        )
        return None if resp is None else resp.json()

    async def get_dependencies(self, project_id: int | str) -> list[dict] | None:
        resp = await self._request(
            "GET", f"/projects/{_pid(project_id)}/dependencies", allow_404=True,
        )
        return None if resp is None else resp.json()

    # ── Writes (optimizer agent) ─────────────────────────────────────────────

    async def create_branch(self, project_id: int | str, branch: str, ref: str = "main") -> dict:
        resp = await self._request(
            "POST",
            f"/projects/{_pid(project_id)}/repository/branches",
            json={"branch": branch, "ref": ref},
        )
        return resp.json()

    async def commit_file(
        self,
        project_id: int | str,
        branch: str,
        file_path: str,
        content: str,
        commit_message: str,
        action: str = "update",
    ) -> dict:
        resp = await self._request(
            "POST",
            f"/projects/{_pid(project_id)}/repository/commits",
            json={
                "branch": branch,
                "commit_message": commit_message,
                "actions": [{"action": action, "file_path": file_path, "content": content}],
            },
        )
        return resp.json()

    async def create_merge_request(
        self,
        project_id: int | str,
        *,
        title: str,
        description: str,
        source_branch: str,
        target_branch: str = "main",
    ) -> dict:
        resp = await self._request(
            "POST",
            f"/projects/{_pid(project_id)}/merge_requests",
            json={
                "source_branch": source_branch,
                "target_branch": target_branch,
                "title": title,
                "description": description,
            },
        )
        return resp.json()

    # ── Transport ────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, allow_404: bool = False, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("GitLab %s %s failed: %s", method, path, e)
            raise UpstreamFetchError(f"GitLab request failed: {e}", url=url) from e

        if resp.status_code == 404 and allow_404:
            return None
        if resp.is_error:
            logger.warning("GitLab %s %s returned %d", method, path, resp.status_code)
            raise UpstreamFetchError(
                f"GitLab returned HTTP {resp.status_code}",
                url=url,
                status=resp.status_code,
            )
        return resp


def _pid(project_id: int | str) -> str:
    # Namespaced paths ("group/project") must be URL-encoded
    return quote(str(project_id), safe="")
