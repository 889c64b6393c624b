"""
Optimization Service: suggested pipeline changes and their lifecycle.

    pending ──apply──▶ in_progress ──complete──▶ completed
                            │                        │
                            └──────fail──────▶ failed ◀── (merged change reported broken)

Completion is driven by the complete / fail endpoints (merge-request
webhooks or the optimizer agent), never by a timer.
"""

import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.database import utcnow
from greenci.errors import InvalidTransitionError, NotFoundError
from greenci.middleware.metrics import optimizations_transitions_total
from greenci.models import Optimization, Project
from greenci.schemas.schemas import FailureMetadata
from greenci.services.project_service import ProjectService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100

VALID_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"in_progress"},
    "in_progress": {"completed", "failed"},
    "completed": {"failed"},
    "failed": set(),  # terminal
}

STATUSES = tuple(VALID_TRANSITIONS)


def serialize_optimization(opt: Optimization) -> dict:
    return {
        "id": opt.id,
        "project_id": opt.project_id,
        "gitlab_project_id": opt.project.gitlab_project_id if opt.project else None,
        "title": opt.title,
        "description": opt.description,
        "type": opt.type,
        "impact": opt.impact,
        "estimated_savings_kg": opt.estimated_savings_kg,
        "status": opt.status,
        "mr_url": opt.mr_url,
        "agent_id": opt.agent_id,
        "metadata": opt.meta or {},
        "created_at": opt.created_at,
        "applied_at": opt.applied_at,
        "completed_at": opt.completed_at,
    }


class OptimizationService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_optimization(
        self,
        gitlab_project_id: str,
        title: str,
        description: str,
        *,
        type: str = "general",
        impact: str = "medium",
        estimated_savings_kg: float | None = None,
        metadata: dict | None = None,
        agent_id: int | None = None,
        project_name: str | None = None,
    ) -> Optimization:
        project = await ProjectService(self.session).get_or_create(gitlab_project_id, project_name)
        opt = Optimization(
            project_id=project.id,
            title=title,
            description=description,
            type=type,
            impact=impact,
            estimated_savings_kg=estimated_savings_kg if estimated_savings_kg is not None else 0.0,
            status="pending",
            agent_id=agent_id,
            meta=metadata or {},
        )
        opt.project = project
        self.session.add(opt)
        await self.session.flush()
        logger.info("Optimization %s created for project %s: %s", opt.id, gitlab_project_id, title)
        return opt

    async def list_optimizations(
        self,
        status: str | None = None,
        gitlab_project_id: str | None = None,
        impact: str | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[Optimization]:
        query = select(Optimization)
        if status:
            query = query.where(Optimization.status == status)
        if gitlab_project_id:
            query = query.join(Project).where(Project.gitlab_project_id == str(gitlab_project_id))
        if impact:
            query = query.where(Optimization.impact == impact)
        query = query.order_by(Optimization.created_at.desc(), Optimization.id.desc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())

    async def project_optimizations(self, project_id: int, status: str | None = None) -> list[Optimization]:
        query = select(Optimization).where(Optimization.project_id == project_id)
        if status:
            query = query.where(Optimization.status == status)
        result = await self.session.execute(query.order_by(Optimization.created_at.desc()))
        return list(result.scalars())

    async def get_optimization(self, optimization_id: int) -> Optimization:
        opt = await self.session.get(Optimization, optimization_id)
        if opt is None:
            raise NotFoundError(f"Optimization {optimization_id} not found")
        return opt

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def update_status(
        self, optimization_id: int, status: str, mr_url: str | None = None,
    ) -> Optimization:
        opt = await self.get_optimization(optimization_id)
        self._transition(opt, status)
        if mr_url:
            opt.mr_url = mr_url
        await self.session.flush()
        return opt

    async def apply(
        self, optimization_id: int, mr_url: str | None = None, agent_id: int | None = None,
    ) -> Optimization:
        """Mark an optimization as being applied (merge request opened)."""
        opt = await self.get_optimization(optimization_id)
        self._transition(opt, "in_progress")
        if mr_url:
            opt.mr_url = mr_url
        if agent_id is not None:
            opt.agent_id = agent_id
        await self.session.flush()
        return opt

    async def complete(self, optimization_id: int, mr_url: str | None = None) -> Optimization:
        """The merge request was merged."""
        opt = await self.get_optimization(optimization_id)
        self._transition(opt, "completed")
        if mr_url:
            opt.mr_url = mr_url
        await self.session.flush()
        return opt

    async def fail(self, optimization_id: int, error: str) -> Optimization:
        """The change could not be applied, or a merged change was reported broken."""
        opt = await self.get_optimization(optimization_id)
        self._transition(opt, "failed")
        failure = FailureMetadata(
            error=error,
            failed_at=utcnow(),
            extra={"previous": opt.meta or {}},
        )
        opt.meta = failure.model_dump(mode="json")
        await self.session.flush()
        logger.warning("Optimization %s failed: %s", opt.id, error)
        return opt

    def _transition(self, opt: Optimization, new_status: str) -> None:
        current = opt.status
        if new_status not in VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError("optimization", current, new_status)

        opt.status = new_status
        now = utcnow()
        if new_status == "in_progress":
            opt.applied_at = now
        elif new_status == "completed":
            opt.completed_at = now

        optimizations_transitions_total.labels(from_status=current, to_status=new_status).inc()
        logger.info("Optimization %s status %s → %s", opt.id, current, new_status)

    # ── Stats ────────────────────────────────────────────────────────────────

    async def get_stats(self) -> dict:
        result = await self.session.execute(
            select(Optimization.status, func.count(Optimization.id)).group_by(Optimization.status)
        )
        counts = {status: count for status, count in result.all()}

        savings = await self.session.execute(
            select(func.coalesce(func.sum(Optimization.estimated_savings_kg), 0.0))
            .where(Optimization.status == "completed")
        )
        return {
            "total": sum(counts.values()),
            "pending": counts.get("pending", 0),
            "in_progress": counts.get("in_progress", 0),
            "completed": counts.get("completed", 0),
            "failed": counts.get("failed", 0),
            "total_savings": float(savings.scalar() or 0.0),
        }
