from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from kelly.core.errors import GenerationFailure, KellyError, PartialApplyFailure, StorageFailure, ValidationFailure
from kelly.core.security import SecurityService
from kelly.services.aggregation import AggregatorRegistry, InsightAggregator
from kelly.services.planner import SellingPlanner

security = HTTPBearer()


async def get_current_owner_id(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """Dependency resolving the authenticated seller id used to partition insights"""
    payload = SecurityService.decode_token(credentials.credentials)

    if not payload or payload.get("type") != "access" or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload["sub"]


def get_registry(request: Request) -> AggregatorRegistry:
    registry = getattr(request.app.state, "aggregators", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Insight engine not initialized")
    return registry


async def get_aggregator(
    owner_id: str = Depends(get_current_owner_id),
    registry: AggregatorRegistry = Depends(get_registry)
) -> InsightAggregator:
    """Per-seller aggregation state (pipelines, counts, local dismissals)"""
    return registry.for_owner(owner_id)


def get_planner(registry: AggregatorRegistry = Depends(get_registry)) -> SellingPlanner:
    return registry.planner


# Status codes for engine failures surfaced over HTTP
ERROR_STATUS = (
    (ValidationFailure, 422),
    (PartialApplyFailure, 409),
    (GenerationFailure, 502),
    (StorageFailure, 503),
)


def http_error(exc: KellyError) -> HTTPException:
    """Translate an engine failure into an HTTPException carrying its user message"""
    detail = {"message": exc.message}
    if isinstance(exc, GenerationFailure):
        detail["reason"] = exc.reason
    if isinstance(exc, PartialApplyFailure):
        detail["applied_ids"] = exc.applied_ids
        detail["failed_id"] = exc.failed_id

    for error_class, status_code in ERROR_STATUS:
        if isinstance(exc, error_class):
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=500, detail=detail)
