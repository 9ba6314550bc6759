from fastapi import APIRouter

from kelly.api.v1.endpoints import insights, market_stats, planner

api_router = APIRouter()

api_router.include_router(insights.router, prefix="/insights", tags=["insights"])
api_router.include_router(market_stats.router, prefix="/market-stats", tags=["market-stats"])
api_router.include_router(planner.router, prefix="/planner", tags=["planner"])
