"""Insight list, refresh, dismiss and execute endpoints"""
from fastapi import APIRouter, Depends, Query

from ....core.deps import get_aggregator, http_error
from ....core.errors import KellyError
from ....models.api import ActionResult, DismissResponse, InsightsResponse
from ....services.aggregation import InsightAggregator


router = APIRouter()


@router.get("", response_model=InsightsResponse)
@router.get("/", response_model=InsightsResponse)
async def list_insights(aggregator: InsightAggregator = Depends(get_aggregator)):
    """Load all pipelines (cache first) and return the merged view"""
    await aggregator.load_all()
    return aggregator.snapshot()


@router.post("/refresh", response_model=InsightsResponse)
async def refresh_insights(
    force: bool = Query(False, description="Bypass the insight cache"),
    aggregator: InsightAggregator = Depends(get_aggregator)
):
    await aggregator.refresh(force_bypass_cache=force)
    return aggregator.snapshot()


@router.post("/{insight_id}/dismiss", response_model=DismissResponse)
async def dismiss_insight(insight_id: str, aggregator: InsightAggregator = Depends(get_aggregator)):
    try:
        counts = await aggregator.dismiss(insight_id)
    except KellyError as e:
        raise http_error(e)
    return DismissResponse(insight_id=insight_id, counts=counts)


@router.post("/{insight_id}/execute", response_model=ActionResult)
async def execute_insight(insight_id: str, aggregator: InsightAggregator = Depends(get_aggregator)):
    """Apply the insight's action; informational insights only return a navigation hint"""
    try:
        return await aggregator.execute(insight_id)
    except KellyError as e:
        raise http_error(e)
