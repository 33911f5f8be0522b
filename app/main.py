"""FastAPI application entry point for the URL shortener service.

This module configures the FastAPI application with lifecycle management,
error rendering, metrics and route registration.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ connect DBs, │
    │ indexes,     │
    │ warm counter,│
    │ start worker │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ stop worker, │
    │ close DBs    │
    └──────────────┘

How to Use
===========
**Step 1: Run with uvicorn**::
    uvicorn app.main:app --host 0.0.0.0 --port 8080

**Step 2: Make API calls**::
    curl http://localhost:8080/health

    curl -X POST http://localhost:8080/urls \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com", "alias": "example"}'

    curl -i http://localhost:8080/urls/example

Key Behaviours
===============
- ``AppError`` subclasses become ``{"error": message}`` with their status code.
- Infrastructure errors are logged with their cause and answered with an
  opaque 500 body.
- Prometheus metrics are exposed at ``/metrics``.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import get_settings
from app.dependencies import _service_manager
from app.exceptions import AppError, InfrastructureError
from app.routes import router

settings = get_settings()
logger = logging.getLogger("urlshortener")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with a Redis-backed distributed counter",
    lifespan=lifespan,
)


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, InfrastructureError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": InfrastructureError.default_message})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
