"""
Project Service: CRUD over GitLab projects tracked by the dashboard.

Metrics and optimizations reference a project by its GitLab id; ingesting
one for an unknown id registers the project on the fly as `Project-<id>`.
"""

import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.errors import ConflictError, NotFoundError
from greenci.models import Project, PipelineMetric, Optimization

logger = logging.getLogger(__name__)


def serialize_project(project: Project) -> dict:
    return {
        "id": project.id,
        "gitlab_project_id": project.gitlab_project_id,
        "name": project.name,
        "description": project.description,
        "settings": project.settings or {},
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


class ProjectService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_projects(self) -> list[Project]:
        result = await self.session.execute(select(Project).order_by(Project.name))
        return list(result.scalars())

    async def get_project(self, project_id: int) -> Project:
        project = await self.session.get(Project, project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def get_by_gitlab_id(self, gitlab_project_id: str) -> Project:
        project = await self._find_by_gitlab_id(gitlab_project_id)
        if project is None:
            raise NotFoundError(f"Project with GitLab id {gitlab_project_id} not found")
        return project

    async def create_project(
        self,
        gitlab_project_id: str,
        name: str,
        description: str | None = None,
        settings: dict | None = None,
    ) -> Project:
        if await self._find_by_gitlab_id(gitlab_project_id) is not None:
            raise ConflictError(f"Project with GitLab id {gitlab_project_id} already exists")
        project = Project(
            gitlab_project_id=str(gitlab_project_id),
            name=name,
            description=description,
            settings=settings or {},
        )
        self.session.add(project)
        await self.session.flush()
        logger.info("Project %s registered (GitLab id %s)", project.id, gitlab_project_id)
        return project

    async def update_project(self, project_id: int, **fields) -> Project:
        project = await self.get_project(project_id)
        for key in ("name", "description", "settings"):
            if fields.get(key) is not None:
                setattr(project, key, fields[key])
        await self.session.flush()
        return project

    async def delete_project(self, project_id: int) -> None:
        project = await self.get_project(project_id)
        # Explicit child deletes: SQLite does not enforce ON DELETE CASCADE by default
        await self.session.execute(delete(PipelineMetric).where(PipelineMetric.project_id == project.id))
        await self.session.execute(delete(Optimization).where(Optimization.project_id == project.id))
        await self.session.delete(project)
        await self.session.flush()
        logger.info("Project %s deleted", project_id)

    async def get_or_create(self, gitlab_project_id: str, name: str | None = None) -> Project:
        project = await self._find_by_gitlab_id(gitlab_project_id)
        if project is None:
            project = Project(
                gitlab_project_id=str(gitlab_project_id),
                name=name or f"Project-{gitlab_project_id}",
                settings={},
            )
            self.session.add(project)
            await self.session.flush()
            logger.info("Project auto-registered for GitLab id %s", gitlab_project_id)
        return project

    async def _find_by_gitlab_id(self, gitlab_project_id: str) -> Project | None:
        result = await self.session.execute(
            select(Project).where(Project.gitlab_project_id == str(gitlab_project_id))
        )
        return result.scalar_one_or_none()
