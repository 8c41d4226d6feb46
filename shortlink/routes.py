"""FastAPI route definitions for the short-link resolver.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    GET  /api/analytics/:code
        └─ AnalyticsResponse (200) or 404 {"error": "URL not found"}

    GET  /:code
        └─ 302 Redirect, 404 {"error": "URL not found"}
           or 500 {"error": "Server error"}

Key Behaviours
===============
- All endpoints use async/await for non-blocking I/O.
- Store, cache and geolocator are injected through the request context.
- Only two failure shapes reach clients: not found and server error.
- Store failures are turned into the server error shape by the StoreError
  handler registered in shortlink.main.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse

from shortlink.dependencies import RequestContext, get_request_context, get_resolver
from shortlink.enums import HealthStatus
from shortlink.resolver import Resolver
from shortlink.schemas import AnalyticsResponse, ErrorResponse, HealthResponse

__all__ = ["NOT_FOUND_MESSAGE", "SERVER_ERROR_MESSAGE", "router"]

NOT_FOUND_MESSAGE = "URL not found"
SERVER_ERROR_MESSAGE = "Server error"

router = APIRouter()


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content=ErrorResponse(error=NOT_FOUND_MESSAGE).model_dump())


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    ctx.logger.info("Health check requested")

    db_status = HealthStatus.HEALTHY if await ctx.store.ping() else HealthStatus.UNHEALTHY
    cache_status = HealthStatus.HEALTHY if await ctx.cache.ping() else HealthStatus.UNHEALTHY
    if db_status is HealthStatus.UNHEALTHY:
        ctx.logger.error("Database health check failed")
    if cache_status is HealthStatus.UNHEALTHY:
        ctx.logger.warning("Cache health check failed")

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )

    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.get(
    "/api/analytics/{code}",
    response_model=AnalyticsResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["analytics"],
)
async def get_analytics(code: str, ctx: RequestContext = Depends(get_request_context)):
    ctx.logger.info(f"Analytics requested for code: {code}")
    link = await ctx.store.find_with_visits(code)
    if link is None:
        ctx.logger.warning(f"Analytics not found for code: {code}")
        return _not_found()
    return AnalyticsResponse.from_link(link)


@router.get(
    "/{code}",
    response_class=RedirectResponse,
    status_code=302,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["redirect"],
)
async def redirect_to_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: Resolver = Depends(get_resolver),
):
    ctx.add_tag("redirect")

    ctx.logger.info(
        f"Redirect requested for code: {code}",
        extra={
            "operation": "redirect",
            "code": code,
            "user_agent": ctx.user_agent,
            "client_ip": ctx.client_ip,
        },
    )

    resolution = await resolver.resolve(
        code,
        user_agent=ctx.user_agent,
        client_ip=ctx.client_ip,
        referer=ctx.referer,
    )
    if resolution is None:
        ctx.logger.warning(
            f"Redirect failed - code not found: {code}",
            extra={
                "operation": "redirect",
                "code": code,
                "error": "not_found",
                "duration_ms": ctx.get_duration(),
            },
        )
        return _not_found()

    ctx.logger.info(
        f"Redirect successful: {code} -> {resolution.destination}",
        extra={
            "operation": "redirect",
            "code": code,
            "target_url": resolution.destination,
            "link_id": resolution.link_id,
            "cache": resolution.cache_status.value,
            "duration_ms": ctx.get_duration(),
        },
    )

    return RedirectResponse(url=resolution.destination, status_code=302)
