"""
Merge Request Service: opens a GitLab merge request for an automated
optimization and moves it to in_progress.

The change itself is written as a proposal file under `.green-ci/` on a fresh
branch; the pipeline edit is left to a human reviewing the merge request.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from greenci.clients.gitlab_client import GitLabClient
from greenci.models import Optimization
from greenci.services.optimization_service import OptimizationService

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "green-ci/optimization-"
PROPOSAL_DIR = ".green-ci/optimizations"


def render_proposal(opt: Optimization) -> str:
    meta = opt.meta or {}
    lines = [
        f"# {opt.title}",
        "",
        opt.description,
        "",
        f"- Category: {opt.type}",
        f"- Impact: {opt.impact}",
    ]
    if opt.estimated_savings_kg is not None:
        lines.append(f"- Estimated savings: {opt.estimated_savings_kg:.6f} kg CO2 per pipeline")
    if meta.get("pipeline_id"):
        lines.append(f"- Found in pipeline: {meta['pipeline_id']}")
    return "\n".join(lines) + "\n"


class MergeRequestService:
    def __init__(self, session: AsyncSession, client: GitLabClient):
        self.session = session
        self.client = client

    async def open_for(
        self, optimization_id: int, agent_id: int | None = None, target_branch: str = "main",
    ) -> Optimization:
        optimizations = OptimizationService(self.session)
        opt = await optimizations.get_optimization(optimization_id)
        project_id = opt.project.gitlab_project_id
        branch = f"{BRANCH_PREFIX}{opt.id}"

        await self.client.create_branch(project_id, branch, ref=target_branch)
        await self.client.commit_file(
            project_id,
            branch,
            f"{PROPOSAL_DIR}/{opt.id}.md",
            render_proposal(opt),
            f"Green CI: {opt.title}",
            action="create",
        )
        mr = await self.client.create_merge_request(
            project_id,
            title=f"Green CI: {opt.title}",
            description=opt.description,
            source_branch=branch,
            target_branch=target_branch,
        )
        mr_url = mr.get("web_url")
        logger.info("Opened merge request %s for optimization %s", mr_url, opt.id)
        return await optimizations.apply(opt.id, mr_url=mr_url, agent_id=agent_id)
