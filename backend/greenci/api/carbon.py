"""
Carbon API: the stateless calculator over HTTP.

Nothing is persisted; invalid pipeline data returns 422.
"""

from fastapi import APIRouter, Depends

from greenci.api.deps import get_calculator, require
from greenci.auth.context import RequestContext
from greenci.auth.permissions import Permission
from greenci.carbon.calculator import CarbonCalculator
from greenci.schemas.schemas import EcoScoreRequest, FootprintRequest, PredictRequest

router = APIRouter(prefix="/api/carbon", tags=["carbon"])


def _jobs(body: FootprintRequest) -> list[dict]:
    return [j.model_dump() for j in body.jobs]


@router.post("/footprint")
async def calculate_footprint(
    body: FootprintRequest,
    ctx: RequestContext = Depends(require(Permission.CARBON_CALCULATE)),
    calculator: CarbonCalculator = Depends(get_calculator),
):
    footprint = calculator.calculate_pipeline_footprint(body.pipeline.model_dump(), _jobs(body))
    return footprint.to_dict()


@router.post("/eco-score")
async def calculate_eco_score(
    body: EcoScoreRequest,
    ctx: RequestContext = Depends(require(Permission.CARBON_CALCULATE)),
    calculator: CarbonCalculator = Depends(get_calculator),
):
    historical = body.historical_data.model_dump() if body.historical_data else None
    score = calculator.calculate_eco_score(body.pipeline.model_dump(), _jobs(body), historical)
    return score.to_dict()


@router.post("/predict")
async def predict_impact(
    body: PredictRequest,
    ctx: RequestContext = Depends(require(Permission.CARBON_CALCULATE)),
    calculator: CarbonCalculator = Depends(get_calculator),
):
    return calculator.predict_impact(body.current_metrics.model_dump(), body.changes.model_dump())
