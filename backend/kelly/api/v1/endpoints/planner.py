"""Scheduling suggestion endpoints"""
from typing import List, Optional
from fastapi import APIRouter, Body, Depends

from ....core.deps import get_current_owner_id, get_planner, http_error
from ....core.errors import KellyError
from ....models.api import AcceptSuggestionRequest, SellingSuggestion
from ....services.planner import SellingPlanner


router = APIRouter()


@router.get("/suggestions", response_model=List[SellingSuggestion])
async def list_suggestions(
    owner_id: str = Depends(get_current_owner_id),
    planner: SellingPlanner = Depends(get_planner)
):
    try:
        return await planner.load(owner_id)
    except KellyError as e:
        raise http_error(e)


@router.post("/suggestions/{suggestion_id}/accept", response_model=SellingSuggestion)
async def accept_suggestion(
    suggestion_id: str,
    request: Optional[AcceptSuggestionRequest] = Body(None),
    owner_id: str = Depends(get_current_owner_id),
    planner: SellingPlanner = Depends(get_planner)
):
    """Schedule the item on the suggested date, or on ``scheduled_for`` when given"""
    try:
        return await planner.accept(owner_id, suggestion_id, request.scheduled_for if request else None)
    except KellyError as e:
        raise http_error(e)


@router.post("/suggestions/{suggestion_id}/reject", response_model=SellingSuggestion)
async def reject_suggestion(
    suggestion_id: str,
    owner_id: str = Depends(get_current_owner_id),
    planner: SellingPlanner = Depends(get_planner)
):
    try:
        return await planner.reject(owner_id, suggestion_id)
    except KellyError as e:
        raise http_error(e)
