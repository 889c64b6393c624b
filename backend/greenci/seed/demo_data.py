"""
Demo data seed: three projects, the default agents, a month of pipeline
metrics and one optimization in each lifecycle stage.

Usage:
    python -m greenci.seed.demo_data          # Seed an empty database
    python -m greenci.seed.demo_data --clean  # Delete all rows + re-seed
    python -m greenci.seed.demo_data --verify # Just verify existing data
"""

import asyncio
import random
import sys
import time
from datetime import timedelta

from sqlalchemy import delete, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.carbon.calculator import CarbonCalculator, grade_for_score
from greenci.database import Base, async_session, engine, utcnow
from greenci.models import Agent, AgentRun, Optimization, PipelineMetric, Project

SEED = 42
METRIC_DAYS = 30

PROJECTS = [
    {"gitlab_project_id": "frontend-web", "name": "Frontend Web App", "description": "Main frontend application"},
    {"gitlab_project_id": "backend-api", "name": "Backend API", "description": "REST API service"},
    {"gitlab_project_id": "data-pipeline", "name": "Data Pipeline", "description": "ETL and data processing"},
]

AGENTS = [
    {"name": "green-ci-optimizer", "status": "active", "version": "2.0.0",
     "total_analyses": 156, "total_mrs_created": 42, "avg_response_time": 28.5},
    {"name": "green-ci-sentinel", "status": "active", "version": "1.0.0",
     "total_analyses": 1234, "total_mrs_created": 23, "avg_response_time": 12.3},
    {"name": "green-ci-advisor", "status": "idle", "version": "1.5.0",
     "total_analyses": 89, "total_mrs_created": 0, "avg_response_time": 15.7},
]


async def seed_projects(session: AsyncSession) -> dict[str, Project]:
    projects = {}
    for data in PROJECTS:
        project = Project(settings={}, **data)
        session.add(project)
        projects[data["gitlab_project_id"]] = project
    await session.flush()
    print(f"  Created {len(projects)} projects")
    return projects


async def seed_agents(session: AsyncSession) -> dict[str, Agent]:
    agents = {}
    now = utcnow()
    for data in AGENTS:
        agent = Agent(last_run=now, meta={}, **data)
        session.add(agent)
        agents[data["name"]] = agent
    await session.flush()
    print(f"  Created {len(agents)} agents")
    return agents


async def seed_metrics(session: AsyncSession, rng: random.Random, projects: dict[str, Project]) -> int:
    """One metric per day, rotating through the projects, scored by the real calculator."""
    calculator = CarbonCalculator()
    project_list = list(projects.values())
    now = utcnow()

    for i in range(METRIC_DAYS):
        project = project_list[i % len(project_list)]
        duration = rng.randint(300, 2300)
        job_count = rng.randint(5, 24)
        jobs = [{"name": f"job-{n}", "stage": "build", "duration": duration / job_count} for n in range(job_count)]
        pipeline = {"duration": duration}

        footprint = calculator.calculate_pipeline_footprint(pipeline, jobs)
        score = calculator.calculate_eco_score(pipeline, jobs)
        session.add(PipelineMetric(
            project_id=project.id,
            pipeline_id=f"pipeline-{100000 + METRIC_DAYS - i}",
            timestamp=now - timedelta(days=i),
            duration=duration,
            job_count=job_count,
            energy_kwh=footprint.energy_kwh,
            co2_kg=footprint.co2_kg,
            eco_score=score.score,
            grade=grade_for_score(score.score),
            meta={"kind": "manual", "notes": "demo data", "files": [], "extra": {}},
        ))
    await session.flush()
    print(f"  Created {METRIC_DAYS} metrics")
    return METRIC_DAYS


async def seed_optimizations(session: AsyncSession, projects: dict[str, Project], agents: dict[str, Agent]) -> int:
    now = utcnow()
    optimizer = agents["green-ci-optimizer"]
    rows = [
        Optimization(
            project_id=projects["frontend-web"].id,
            title="Enable Dependency Caching",
            description="Add caching for node_modules to reduce build time",
            type="caching",
            impact="high",
            estimated_savings_kg=0.045,
            status="pending",
            meta={"kind": "manual", "files": [".gitlab-ci.yml"], "notes": None, "extra": {}},
        ),
        Optimization(
            project_id=projects["backend-api"].id,
            title="Consolidate Test Jobs",
            description="Merge 12 parallel test jobs into 4 to reduce overhead",
            type="parallelization",
            impact="medium",
            estimated_savings_kg=0.021,
            status="in_progress",
            applied_at=now - timedelta(days=1),
            mr_url="https://gitlab.com/backend-api/merge_requests/123",
            agent_id=optimizer.id,
            meta={"kind": "manual", "files": [], "notes": None,
                  "extra": {"jobs": ["test-1", "test-2", "test-3"]}},
        ),
        Optimization(
            project_id=projects["data-pipeline"].id,
            title="Use Alpine Base Images",
            description="Switch from node:20 to node:20-alpine for smaller containers",
            type="container",
            impact="low",
            estimated_savings_kg=0.008,
            status="completed",
            applied_at=now - timedelta(days=2),
            completed_at=now - timedelta(days=1),
            mr_url="https://gitlab.com/data-pipeline/merge_requests/456",
            agent_id=optimizer.id,
            meta={"kind": "manual", "files": [], "notes": None, "extra": {"image": "node:20-alpine"}},
        ),
    ]
    session.add_all(rows)
    await session.flush()
    print(f"  Created {len(rows)} optimizations")
    return len(rows)


async def verify_data(session: AsyncSession) -> bool:
    """Verify all seeded data counts."""
    print("\n── Verification ──")
    checks = [
        ("projects", Project, len(PROJECTS)),
        ("agents", Agent, len(AGENTS)),
        ("pipeline_metrics", PipelineMetric, METRIC_DAYS),
        ("optimizations", Optimization, 3),
    ]

    all_ok = True
    for name, model, expected_min in checks:
        count = (await session.execute(select(func.count()).select_from(model))).scalar()
        status = "OK" if count >= expected_min else "FAIL"
        if status == "FAIL":
            all_ok = False
        print(f"  {name}: {count:,} [{status}] (expected >= {expected_min:,})")
    return all_ok


async def clean_all(session: AsyncSession) -> None:
    """Delete all rows, children first (preserves schema)."""
    print("Cleaning all data...")
    for model in (AgentRun, Optimization, PipelineMetric, Agent, Project):
        await session.execute(delete(model))
    await session.commit()
    print("All data cleaned.")


async def run_seed():
    """Main seed entry point."""
    start = time.time()
    clean = "--clean" in sys.argv
    verify_only = "--verify" in sys.argv

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        if verify_only:
            ok = await verify_data(session)
            await engine.dispose()
            sys.exit(0 if ok else 1)

        if clean:
            await clean_all(session)

        # Check if already seeded
        existing = (await session.execute(select(func.count()).select_from(Project))).scalar()
        if existing > 0 and not clean:
            print("Database already seeded. Use --clean to re-seed.")
            ok = await verify_data(session)
            await engine.dispose()
            sys.exit(0 if ok else 1)

        rng = random.Random(SEED)

        print("=" * 60)
        print("Green CI: Demo Data Seed")
        print("=" * 60)

        print("\n[1/4] Projects")
        projects = await seed_projects(session)

        print("\n[2/4] Agents")
        agents = await seed_agents(session)

        print("\n[3/4] Pipeline metrics")
        await seed_metrics(session, rng, projects)

        print("\n[4/4] Optimizations")
        await seed_optimizations(session, projects, agents)

        await session.commit()
        ok = await verify_data(session)

    await engine.dispose()
    print(f"\nSeed completed in {time.time() - start:.1f}s")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    asyncio.run(run_seed())
