"""
Pydantic schemas for API request/response models.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


# ── Metadata (tagged union on "kind") ──

class AnalysisMetadata(BaseModel):
    """Written by an analyzer run."""
    kind: Literal["analysis"] = "analysis"
    pipeline_id: str | None = None
    category: str | None = None
    automated: bool = False
    priority: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ManualMetadata(BaseModel):
    """Entered by a person through the API."""
    kind: Literal["manual"] = "manual"
    files: list[str] = Field(default_factory=list)
    notes: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class FailureMetadata(BaseModel):
    kind: Literal["failure"] = "failure"
    error: str
    failed_at: datetime
    extra: dict[str, Any] = Field(default_factory=dict)


OptimizationMetadata = Annotated[
    Union[AnalysisMetadata, ManualMetadata, FailureMetadata],
    Field(discriminator="kind"),
]
MetricMetadata = Annotated[
    Union[AnalysisMetadata, ManualMetadata],
    Field(discriminator="kind"),
]


# ── Carbon inputs ──

class JobInput(BaseModel):
    name: str | None = None
    stage: str | None = None
    status: str | None = None
    duration: float | None = Field(None, ge=0)
    started_at: str | None = None
    finished_at: str | None = None


class PipelineInput(BaseModel):
    id: str | int | None = None
    duration: float | None = None
    status: str | None = None


class FootprintRequest(BaseModel):
    pipeline: PipelineInput
    jobs: list[JobInput] = Field(default_factory=list)


class HistoricalData(BaseModel):
    average_score: float | None = None


class EcoScoreRequest(FootprintRequest):
    historical_data: HistoricalData | None = None


class CurrentMetrics(BaseModel):
    duration: float = Field(..., ge=0)
    job_count: int = Field(..., ge=0)
    co2_kg: float = Field(0.0, ge=0)
    energy_kwh: float = Field(0.0, ge=0)


class ProposedChanges(BaseModel):
    duration_delta: float = 0  # minutes, negative = faster
    job_delta: int = 0
    cache_improvement: bool = False
    pipeline_frequency: int | None = Field(None, ge=1)


class PredictRequest(BaseModel):
    current_metrics: CurrentMetrics
    changes: ProposedChanges


# ── Projects ──

class ProjectCreate(BaseModel):
    gitlab_project_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)


class ProjectUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    settings: dict[str, Any] | None = None


class ProjectSchema(BaseModel):
    id: int
    gitlab_project_id: str
    name: str
    description: str | None
    settings: dict[str, Any]
    created_at: datetime | None
    updated_at: datetime | None


# ── Metrics ──

class MetricCreate(BaseModel):
    """
    Agent webhook payload. Either send computed values (energy_kwh, co2_kg,
    eco_score, grade) or raw `jobs` and let the server compute them.
    """
    project_id: str = Field(..., description="GitLab project id")
    pipeline_id: str
    duration: int = Field(..., ge=0, le=86400)
    job_count: int | None = Field(None, ge=0)
    jobs: list[JobInput] | None = None
    energy_kwh: float | None = Field(None, ge=0)
    co2_kg: float | None = Field(None, ge=0)
    eco_score: int | None = Field(None, ge=0, le=100)
    grade: str | None = Field(None, pattern="^[A-F]$")
    timestamp: datetime | None = None
    metadata: MetricMetadata = Field(default_factory=ManualMetadata)


class MetricSchema(BaseModel):
    id: int
    project_id: int
    gitlab_project_id: str | None = None
    pipeline_id: str
    timestamp: datetime | None
    duration: int
    job_count: int
    energy_kwh: float
    co2_kg: float
    eco_score: int
    grade: str
    metadata: dict[str, Any]


class MetricsSummary(BaseModel):
    total_pipelines: int
    total_co2: float
    total_energy: float
    average_score: float
    projects: int


# ── Optimizations ──

class OptimizationCreate(BaseModel):
    project_id: str = Field(..., description="GitLab project id")
    title: str = Field(..., min_length=1, max_length=300)
    description: str = Field(..., min_length=1)
    type: str = "general"
    impact: Literal["high", "medium", "low"] = "medium"
    estimated_savings_kg: float | None = Field(None, ge=0)
    metadata: OptimizationMetadata = Field(default_factory=ManualMetadata)


class OptimizationStatusUpdate(BaseModel):
    status: Literal["pending", "in_progress", "completed", "failed"]


class OptimizationApply(BaseModel):
    mr_url: str | None = None
    agent_name: str | None = None


class OptimizationFail(BaseModel):
    error: str = Field(..., min_length=1)


class OptimizationSchema(BaseModel):
    id: int
    project_id: int
    gitlab_project_id: str | None = None
    title: str
    description: str
    type: str
    impact: str
    estimated_savings_kg: float | None
    status: str
    mr_url: str | None
    agent_id: int | None
    metadata: dict[str, Any]
    created_at: datetime | None
    applied_at: datetime | None
    completed_at: datetime | None


class OptimizationStats(BaseModel):
    total: int
    pending: int
    in_progress: int
    completed: int
    failed: int
    total_savings: float


# ── Agents ──

class AgentSchema(BaseModel):
    name: str
    status: str
    version: str | None
    last_run: datetime | None
    total_analyses: int
    total_mrs_created: int
    avg_response_time: float
    current_job_id: str | None
    metadata: dict[str, Any]


class AgentStatusUpdate(BaseModel):
    status: Literal["active", "idle", "running", "error"]
    total_analyses: int = Field(0, ge=0, description="Increment")
    total_mrs_created: int = Field(0, ge=0, description="Increment")
    avg_response_time: float | None = Field(None, ge=0)


class AgentRunRequest(BaseModel):
    project_id: str | None = None
    pipeline_id: str | None = None
    open_merge_requests: bool = False


class AgentRunResponse(BaseModel):
    agent: AgentSchema
    job_id: str


class AgentRunComplete(BaseModel):
    success: bool = True
    analyses: int = Field(1, ge=0)
    mrs_created: int = Field(0, ge=0)
    response_time_ms: float | None = Field(None, ge=0)
    message: str | None = None


class AgentLogEntry(BaseModel):
    timestamp: datetime | None
    level: str
    job_id: str
    message: str
    metadata: dict[str, Any]


# ── Analysis ──

class AnalysisRunRequest(BaseModel):
    project_id: str = Field(..., description="GitLab project id")
    pipeline_id: str
    agent_name: str = "green-ci-optimizer"


class AnalysisRunResponse(BaseModel):
    metric: MetricSchema
    optimizations: list[OptimizationSchema]
    analysis: dict[str, Any]
    footprint: dict[str, Any]
    eco_score: dict[str, Any]


# ── Auth ──

class TokenRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str
