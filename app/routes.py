"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /urls
        ├─ URLCreate (request body)
        └─ URLCreateResponse (201) or 400/409

    GET  /urls
        └─ list[URLInfo] owned by X-User-ID (200)

    GET  /urls/:short_code?use_cache=true
        └─ Redirect (REDIRECT_STATUS_CODE) or 404

Key Behaviours
===============
- Service errors are ``AppError`` subclasses; ``app.main`` renders them as
  ``{"error": message}`` with the matching status code.
- The caller identity comes from the ``X-User-ID`` header.
- ``use_cache=false`` forces a MongoDB read and skips cache repopulation.
"""

from fastapi import APIRouter, Depends, Query, Response

from app.dependencies import RequestContext, ServiceManager, get_request_context, get_service_manager, get_url_service
from app.enums import HealthStatus
from app.exceptions import InfrastructureError
from app.schemas import HealthResponse, URLCreate, URLCreateResponse, URLInfo
from app.url_service import URLShorteningService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(manager: ServiceManager = Depends(get_service_manager)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await manager.url_store.ping()
    except InfrastructureError as e:
        manager.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await manager.cache.ping()
    except InfrastructureError as e:
        manager.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/urls", response_model=URLCreateResponse, status_code=201, tags=["urls"])
async def create_short_url(
    payload: URLCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLCreateResponse:
    short_code = await service.create_short_url(payload, user_id=ctx.user_id)
    ctx.logger.info(f"URL shortened: {short_code} in {ctx.get_duration():.1f}ms")
    return URLCreateResponse(short_code=short_code)


@router.get("/urls", response_model=list[URLInfo], tags=["urls"])
async def list_urls(
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> list[URLInfo]:
    mappings = await service.list_user_urls(ctx.user_id)
    return [URLInfo.from_mapping(mapping) for mapping in mappings]


@router.get("/urls/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    use_cache: bool = Query(True, description="Read through the Redis cache"),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    original_url = await service.get_original_url(short_code, use_cache=use_cache)
    ctx.logger.info(f"Redirect {short_code} -> {original_url}")
    return Response(
        status_code=ctx.settings.REDIRECT_STATUS_CODE,
        headers={"Location": original_url},
    )
