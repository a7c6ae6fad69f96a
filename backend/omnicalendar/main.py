"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from omnicalendar.api.router import api_router
from omnicalendar.core.config import get_settings
from omnicalendar.core.database import close_db, engine
from omnicalendar.core.exceptions import register_exception_handlers
from omnicalendar.observability import RequestLoggingMiddleware, get_metrics_backend, setup_tracing
from omnicalendar.services.holidays import close_calendarific_client

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    logger.info(f"Starting {settings.app_name} {settings.app_version}")
    yield
    await close_calendarific_client()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    openapi_url=f"{settings.api_prefix}/openapi.json" if settings.debug else None,
    docs_url=f"{settings.api_prefix}/docs" if settings.debug else None,
    redoc_url=None,
    lifespan=lifespan,
)

metrics_backend = get_metrics_backend()

# Credentials require explicit origins, not "*"
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, metrics=metrics_backend)
setup_tracing(app, settings, engine=engine)
register_exception_handlers(app)

app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Unauthenticated liveness probe."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> PlainTextResponse:
    """Prometheus-style metrics endpoint."""
    return PlainTextResponse(metrics_backend.render_prometheus())
