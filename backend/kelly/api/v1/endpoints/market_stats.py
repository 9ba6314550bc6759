from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ....database import get_db
from ....core.deps import get_current_owner_id, http_error
from ....core.errors import KellyError
from ....models.api import MarketStats
from ....services.market_stats import compute_market_stats


router = APIRouter()


@router.get("", response_model=List[MarketStats])
async def get_market_stats(
    mine: bool = Query(False, description="Only use the current seller's sales"),
    owner_id: str = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_db)
):
    """Price bands per brand / category / condition over the last 30 days"""
    try:
        return await compute_market_stats(db, owner_id=owner_id if mine else None)
    except KellyError as e:
        raise http_error(e)
