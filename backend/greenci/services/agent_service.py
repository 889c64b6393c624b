"""
Agent Service: registry and run lifecycle of the Green CI agents.

Agent state lives behind AgentRepository; handlers get an AgentService wired
to the SQL repository through FastAPI dependencies, the worker builds its own.

Run lifecycle:
    idle | active | error ──trigger_run──▶ running ──complete_run──▶ active | error

A run is queued on Redis by the caller and finished either by worker.py or by
an agent calling the completion endpoint.
"""

import abc
import logging
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.database import utcnow
from greenci.errors import InvalidTransitionError, NotFoundError, ValidationError
from greenci.middleware.metrics import agent_runs_total
from greenci.models import Agent, AgentRun

logger = logging.getLogger(__name__)

# name → default version for the agents the dashboard knows about
DEFAULT_AGENTS: dict[str, str] = {
    "green-ci-optimizer": "2.0.0",
    "green-ci-sentinel": "1.0.0",
    "green-ci-advisor": "1.5.0",
}
FALLBACK_VERSION = "1.0.0"

VALID_TRANSITIONS: dict[str, set[str]] = {
    "idle": {"active", "running"},
    "active": {"idle", "running", "error"},
    "running": {"active", "idle", "error"},
    "error": {"idle", "active", "running"},
}


def serialize_agent(agent: Agent) -> dict:
    return {
        "name": agent.name,
        "status": agent.status,
        "version": agent.version,
        "last_run": agent.last_run,
        "total_analyses": agent.total_analyses,
        "total_mrs_created": agent.total_mrs_created,
        "avg_response_time": agent.avg_response_time,
        "current_job_id": agent.current_job_id,
        "metadata": agent.meta or {},
    }


# ── Repository ───────────────────────────────────────────────────────────────

class AgentRepository(abc.ABC):
    @abc.abstractmethod
    async def list_agents(self) -> list[Agent]: ...

    @abc.abstractmethod
    async def get(self, name: str) -> Agent | None: ...

    @abc.abstractmethod
    async def add(self, agent: Agent) -> Agent: ...

    @abc.abstractmethod
    async def add_run(self, run: AgentRun) -> AgentRun: ...

    @abc.abstractmethod
    async def get_run(self, job_id: str) -> AgentRun | None: ...

    @abc.abstractmethod
    async def recent_runs(self, agent: Agent, limit: int) -> list[AgentRun]: ...

    @abc.abstractmethod
    async def save(self) -> None: ...


class SQLAgentRepository(AgentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_agents(self) -> list[Agent]:
        result = await self.session.execute(select(Agent).order_by(Agent.name))
        return list(result.scalars())

    async def get(self, name: str) -> Agent | None:
        result = await self.session.execute(select(Agent).where(Agent.name == name))
        return result.scalar_one_or_none()

    async def add(self, agent: Agent) -> Agent:
        self.session.add(agent)
        await self.session.flush()
        return agent

    async def add_run(self, run: AgentRun) -> AgentRun:
        self.session.add(run)
        await self.session.flush()
        return run

    async def get_run(self, job_id: str) -> AgentRun | None:
        result = await self.session.execute(select(AgentRun).where(AgentRun.job_id == job_id))
        return result.scalar_one_or_none()

    async def recent_runs(self, agent: Agent, limit: int) -> list[AgentRun]:
        result = await self.session.execute(
            select(AgentRun)
            .where(AgentRun.agent_id == agent.id)
            .order_by(AgentRun.id.desc())
            .limit(limit)
        )
        return list(result.scalars())

    async def save(self) -> None:
        await self.session.flush()


# ── Service ──────────────────────────────────────────────────────────────────

@dataclass
class RunTicket:
    agent: Agent
    run: AgentRun


class AgentService:
    def __init__(self, repository: AgentRepository):
        self.repo = repository

    async def list_agents(self) -> list[Agent]:
        return await self.repo.list_agents()

    async def get_agent(self, name: str, create: bool = True) -> Agent:
        """Look up an agent; known agent names are registered on first access."""
        agent = await self.repo.get(name)
        if agent is None:
            if not create:
                raise NotFoundError(f"Agent {name} not found")
            agent = await self._create_default_agent(name)
        return agent

    async def ensure_default_agents(self) -> list[Agent]:
        return [await self.get_agent(name) for name in DEFAULT_AGENTS]

    async def update_agent_status(
        self,
        name: str,
        status: str,
        *,
        total_analyses: int = 0,
        total_mrs_created: int = 0,
        avg_response_time: float | None = None,
    ) -> Agent:
        """Status webhook: counters are increments and can only grow."""
        if total_analyses < 0 or total_mrs_created < 0:
            raise ValidationError("Agent counters can only increase")

        agent = await self.get_agent(name)
        if status != agent.status:
            self._check_transition(agent, status)
        agent.status = status
        agent.last_run = utcnow()
        agent.total_analyses += total_analyses
        agent.total_mrs_created += total_mrs_created
        if avg_response_time is not None:
            agent.avg_response_time = avg_response_time
        await self.repo.save()
        logger.info("Agent %s status updated to %s", name, status)
        return agent

    async def record_analysis(self, name: str, analyses: int = 1, mrs_created: int = 0) -> Agent:
        """Count work done outside a queued run (e.g. POST /api/analysis/run) without touching status."""
        agent = await self.get_agent(name)
        agent.total_analyses += analyses
        agent.total_mrs_created += mrs_created
        agent.last_run = utcnow()
        await self.repo.save()
        return agent

    async def trigger_run(self, name: str, params: dict | None = None, trigger: str = "manual") -> RunTicket:
        agent = await self.get_agent(name, create=name in DEFAULT_AGENTS)
        if agent.status == "running":
            raise InvalidTransitionError("agent", agent.status, "running")
        self._check_transition(agent, "running")

        run = AgentRun(
            job_id=f"RUN-{uuid4().hex[:12].upper()}",
            agent_id=agent.id,
            status="running",
            trigger=trigger,
            params=params or {},
            started_at=utcnow(),
        )
        await self.repo.add_run(run)

        agent.status = "running"
        agent.last_run = run.started_at
        agent.current_job_id = run.job_id
        await self.repo.save()
        logger.info("Agent %s run %s started (%s)", name, run.job_id, trigger)
        return RunTicket(agent=agent, run=run)

    async def complete_run(
        self,
        name: str,
        job_id: str,
        *,
        success: bool = True,
        analyses: int = 1,
        mrs_created: int = 0,
        response_time_ms: float | None = None,
        message: str | None = None,
    ) -> Agent:
        """Finish a running job: running → active on success, running → error otherwise."""
        run = await self.get_run(name, job_id)
        agent = await self.get_agent(name, create=False)
        if run.status != "running":
            raise InvalidTransitionError("agent run", run.status, "completed" if success else "failed")

        now = utcnow()
        run.status = "completed" if success else "failed"
        run.finished_at = now
        run.message = message
        run.analyses = analyses if success else 0
        run.mrs_created = mrs_created if success else 0
        if response_time_ms is None and run.started_at:
            response_time_ms = (now - run.started_at).total_seconds() * 1000
        run.response_time_ms = response_time_ms

        if agent.current_job_id == job_id:
            agent.status = "active" if success else "error"
            agent.current_job_id = None
        if success:
            self._record_response_time(agent, response_time_ms, analyses)
            agent.total_analyses += analyses
            agent.total_mrs_created += mrs_created
        await self.repo.save()

        agent_runs_total.labels(agent=name, outcome=run.status).inc()
        log = logger.info if success else logger.warning
        log("Agent %s run %s %s", name, job_id, run.status)
        return agent

    async def get_run(self, name: str, job_id: str) -> AgentRun:
        agent = await self.get_agent(name, create=False)
        run = await self.repo.get_run(job_id)
        if run is None or run.agent_id != agent.id:
            raise NotFoundError(f"Run {job_id} not found for agent {name}")
        return run

    async def get_logs(self, name: str, limit: int = 10) -> list[dict]:
        agent = await self.get_agent(name, create=False)
        runs = await self.repo.recent_runs(agent, limit)
        logs = []
        for run in runs:
            if run.status == "failed":
                level, verb = "error", "failed"
            elif run.status == "running":
                level, verb = "info", "started"
            else:
                level, verb = "info", "completed"
            text = f"Agent {name} {verb} run {run.job_id}"
            if run.message:
                text = f"{text}: {run.message}"
            logs.append({
                "timestamp": run.finished_at or run.started_at,
                "level": level,
                "job_id": run.job_id,
                "message": text,
                "metadata": {
                    "status": run.status,
                    "trigger": run.trigger,
                    "duration_ms": run.response_time_ms,
                    "analyses": run.analyses,
                    "mrs_created": run.mrs_created,
                    "params": run.params or {},
                },
            })
        return logs

    # ── Internals ────────────────────────────────────────────────────────────

    async def _create_default_agent(self, name: str) -> Agent:
        agent = Agent(
            name=name,
            status="idle",
            version=DEFAULT_AGENTS.get(name, FALLBACK_VERSION),
            total_analyses=0,
            total_mrs_created=0,
            avg_response_time=0.0,
            meta={},
        )
        await self.repo.add(agent)
        logger.info("Default agent %s created", name)
        return agent

    @staticmethod
    def _check_transition(agent: Agent, new_status: str) -> None:
        if new_status not in VALID_TRANSITIONS.get(agent.status, set()):
            raise InvalidTransitionError("agent", agent.status, new_status)

    @staticmethod
    def _record_response_time(agent: Agent, response_time_ms: float | None, analyses: int) -> None:
        # Running mean weighted by the number of analyses already counted
        if response_time_ms is None or analyses <= 0:
            return
        previous = agent.total_analyses or 0
        current = agent.avg_response_time or 0.0
        agent.avg_response_time = round(
            (current * previous + response_time_ms * analyses) / (previous + analyses), 2,
        )
