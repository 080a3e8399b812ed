"""Main FastAPI application for the face verification session."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI

from faceid.api.session import router as session_router
from faceid.config import settings
from faceid.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from faceid.models.api_models import HealthResponse
from faceid.observability import instrument_fastapi_app, setup_observability
from faceid.services.session_controller import get_session_controller

SERVICE_VERSION = "1.0.0"

logging.basicConfig(level=settings.log_level.upper(), format="%(message)s")

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting face verification session", host=settings.host, port=settings.port)

    setup_observability(service_name="faceid-session", service_version=SERVICE_VERSION)
    instrument_fastapi_app(app)

    controller = get_session_controller()
    preload = None
    if settings.preload_models:
        preload = asyncio.create_task(controller.load_model())

    yield

    logger.info("Shutting down face verification session")
    if preload is not None and not preload.done():
        preload.cancel()
    await controller.stop_device()


# Create FastAPI application
app = FastAPI(
    title="Face Verification Session",
    description="Passwordless identity verification against a single enrolled face signature",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Add middleware (order matters - last added is executed first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(session_router)


@app.get("/healthz", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=SERVICE_VERSION
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "faceid.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
