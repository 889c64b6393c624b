"""Tests for the agent registry and run lifecycle, on an in-memory repository."""

import pytest

from greenci.errors import InvalidTransitionError, NotFoundError, ValidationError
from greenci.models import Agent, AgentRun
from greenci.services.agent_service import AgentRepository, AgentService, DEFAULT_AGENTS


class InMemoryAgentRepository(AgentRepository):
    def __init__(self):
        self.agents: dict[str, Agent] = {}
        self.runs: dict[str, AgentRun] = {}
        self._next_id = 1

    async def list_agents(self) -> list[Agent]:
        return sorted(self.agents.values(), key=lambda a: a.name)

    async def get(self, name: str) -> Agent | None:
        return self.agents.get(name)

    async def add(self, agent: Agent) -> Agent:
        agent.id = self._next_id
        self._next_id += 1
        self.agents[agent.name] = agent
        return agent

    async def add_run(self, run: AgentRun) -> AgentRun:
        run.id = len(self.runs) + 1
        self.runs[run.job_id] = run
        return run

    async def get_run(self, job_id: str) -> AgentRun | None:
        return self.runs.get(job_id)

    async def recent_runs(self, agent: Agent, limit: int) -> list[AgentRun]:
        runs = [r for r in self.runs.values() if r.agent_id == agent.id]
        return sorted(runs, key=lambda r: r.id, reverse=True)[:limit]

    async def save(self) -> None:
        pass


@pytest.fixture
def service() -> AgentService:
    return AgentService(InMemoryAgentRepository())


@pytest.mark.asyncio
class TestAgentRegistry:
    async def test_default_agents_created_on_demand(self, service):
        agents = await service.ensure_default_agents()
        assert [a.name for a in agents] == list(DEFAULT_AGENTS)
        optimizer = await service.get_agent("green-ci-optimizer")
        assert optimizer.version == "2.0.0"
        assert optimizer.status == "idle"
        assert optimizer.total_analyses == 0

    async def test_unknown_agent_without_create(self, service):
        with pytest.raises(NotFoundError):
            await service.get_agent("ghost", create=False)

    async def test_status_update_increments_counters(self, service):
        await service.update_agent_status("green-ci-sentinel", "active", total_analyses=3, total_mrs_created=1)
        agent = await service.update_agent_status("green-ci-sentinel", "active", total_analyses=2)
        assert agent.total_analyses == 5
        assert agent.total_mrs_created == 1
        assert agent.last_run is not None

    async def test_negative_increment_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.update_agent_status("green-ci-sentinel", "active", total_analyses=-1)

    async def test_record_analysis_keeps_status(self, service):
        agent = await service.record_analysis("green-ci-advisor", analyses=2, mrs_created=1)
        assert (agent.status, agent.total_analyses, agent.total_mrs_created) == ("idle", 2, 1)


@pytest.mark.asyncio
class TestAgentRuns:
    async def test_run_lifecycle_success(self, service):
        ticket = await service.trigger_run("green-ci-optimizer", {"project_id": "42"})
        assert ticket.agent.status == "running"
        assert ticket.agent.current_job_id == ticket.run.job_id
        assert ticket.run.job_id.startswith("RUN-")

        agent = await service.complete_run(
            "green-ci-optimizer", ticket.run.job_id, analyses=1, mrs_created=2, response_time_ms=120.0,
        )
        assert agent.status == "active"
        assert agent.current_job_id is None
        assert agent.total_analyses == 1
        assert agent.total_mrs_created == 2
        assert agent.avg_response_time == 120.0

    async def test_run_failure_moves_to_error(self, service):
        ticket = await service.trigger_run("green-ci-optimizer")
        agent = await service.complete_run("green-ci-optimizer", ticket.run.job_id, success=False, message="boom")
        assert agent.status == "error"
        assert agent.total_analyses == 0
        run = await service.get_run("green-ci-optimizer", ticket.run.job_id)
        assert run.status == "failed"
        assert run.message == "boom"

    async def test_error_agent_can_run_again(self, service):
        ticket = await service.trigger_run("green-ci-optimizer")
        await service.complete_run("green-ci-optimizer", ticket.run.job_id, success=False)
        again = await service.trigger_run("green-ci-optimizer")
        assert again.agent.status == "running"

    async def test_cannot_trigger_while_running(self, service):
        await service.trigger_run("green-ci-optimizer")
        with pytest.raises(InvalidTransitionError):
            await service.trigger_run("green-ci-optimizer")

    async def test_unknown_agent_cannot_be_triggered(self, service):
        with pytest.raises(NotFoundError):
            await service.trigger_run("ghost")

    async def test_run_completes_only_once(self, service):
        ticket = await service.trigger_run("green-ci-optimizer")
        await service.complete_run("green-ci-optimizer", ticket.run.job_id)
        with pytest.raises(InvalidTransitionError):
            await service.complete_run("green-ci-optimizer", ticket.run.job_id)

    async def test_run_belongs_to_agent(self, service):
        ticket = await service.trigger_run("green-ci-optimizer")
        await service.get_agent("green-ci-advisor")
        with pytest.raises(NotFoundError):
            await service.complete_run("green-ci-advisor", ticket.run.job_id)

    async def test_response_time_is_running_mean(self, service):
        for elapsed in (100.0, 200.0, 300.0):
            ticket = await service.trigger_run("green-ci-optimizer")
            agent = await service.complete_run("green-ci-optimizer", ticket.run.job_id, response_time_ms=elapsed)
        assert agent.avg_response_time == 200.0
        assert agent.total_analyses == 3

    async def test_logs_newest_first(self, service):
        first = await service.trigger_run("green-ci-optimizer")
        await service.complete_run("green-ci-optimizer", first.run.job_id, message="all good")
        second = await service.trigger_run("green-ci-optimizer")

        logs = await service.get_logs("green-ci-optimizer", limit=10)
        assert [entry["job_id"] for entry in logs] == [second.run.job_id, first.run.job_id]
        assert logs[0]["message"].startswith("Agent green-ci-optimizer started run")
        assert logs[1]["message"].endswith(": all good")
        assert logs[1]["metadata"]["status"] == "completed"

    async def test_idle_to_error_is_invalid(self, service):
        with pytest.raises(InvalidTransitionError):
            await service.update_agent_status("green-ci-advisor", "error")
