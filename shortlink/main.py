"""FastAPI application entry point for the short-link resolver.

This module configures and initializes the FastAPI application with middleware,
lifecycle management, error handling and route registration.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ init_db()   │
    │ services    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ services    │
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8000

**Step 2 — Follow a short link**::
    curl -i http://localhost:8000/abc123

**Step 3 — Inspect recorded visits**::
    curl http://localhost:8000/api/analytics/abc123

Key Behaviours
===============
- Database tables are created automatically on startup.
- The cache, store and geolocator are built once and shared by all requests.
- Store failures and any other unhandled error answer 500 {"error": "Server error"}.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import get_settings
from shortlink.database import close_db, init_db
from shortlink.dependencies import _service_manager
from shortlink.routes import SERVER_ERROR_MESSAGE, router
from shortlink.schemas import ErrorResponse
from shortlink.store import StoreError

settings = get_settings()
logger = logging.getLogger("shortlink")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short-link resolution with visit analytics",
    lifespan=lifespan,
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(f"Store failure on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=ErrorResponse(error=SERVER_ERROR_MESSAGE).model_dump())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=ErrorResponse(error=SERVER_ERROR_MESSAGE).model_dump())


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
