"""
Analysis API: analyse one GitLab pipeline end to end and persist the result.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.api.deps import get_calculator, get_db, get_gitlab_client, require
from greenci.auth.context import RequestContext
from greenci.auth.permissions import Permission
from greenci.carbon.calculator import CarbonCalculator
from greenci.clients.gitlab_client import GitLabClient
from greenci.schemas.schemas import (
    AnalysisRunRequest,
    AnalysisRunResponse,
    MetricSchema,
    OptimizationSchema,
)
from greenci.services.analysis_service import AnalysisService
from greenci.services.metrics_service import serialize_metric
from greenci.services.optimization_service import serialize_optimization

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


@router.post("/run", response_model=AnalysisRunResponse, status_code=201)
async def run_analysis(
    body: AnalysisRunRequest,
    ctx: RequestContext = Depends(require(Permission.ANALYSIS_RUN)),
    db: AsyncSession = Depends(get_db),
    client: GitLabClient = Depends(get_gitlab_client),
    calculator: CarbonCalculator = Depends(get_calculator),
):
    """
    Fetch the pipeline from GitLab, analyse it, score it, and store the metric
    plus one optimization per actionable insight. GitLab failures return 502.
    """
    result = await AnalysisService(db, client, calculator).run_analysis(
        body.project_id, body.pipeline_id, agent_name=body.agent_name,
    )
    return AnalysisRunResponse(
        metric=MetricSchema(**serialize_metric(result["metric"])),
        optimizations=[OptimizationSchema(**serialize_optimization(o)) for o in result["optimizations"]],
        analysis=result["analysis"],
        footprint=result["footprint"],
        eco_score=result["eco_score"],
    )
