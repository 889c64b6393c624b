"""
Agent models: registered CI agents and their run history.

Agent status: idle | active | running | error. Counters only ever grow.
"""

from datetime import datetime

from sqlalchemy import String, Integer, Float, DateTime, Text, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from greenci.database import Base, JSONType, utcnow


class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="idle")
    version: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_run: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_analyses: Mapped[int] = mapped_column(Integer, default=0)
    total_mrs_created: Mapped[int] = mapped_column(Integer, default=0)
    avg_response_time: Mapped[float] = mapped_column(Float, default=0.0)
    current_job_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow)


class AgentRun(Base):
    __tablename__ = "agent_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    agent_id: Mapped[int] = mapped_column(ForeignKey("agents.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="running")  # running | completed | failed
    trigger: Mapped[str] = mapped_column(String(20), default="manual")  # manual | webhook | schedule
    params: Mapped[dict] = mapped_column(JSONType, default=dict)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    analyses: Mapped[int] = mapped_column(Integer, default=0)
    mrs_created: Mapped[int] = mapped_column(Integer, default=0)
    response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now())
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
