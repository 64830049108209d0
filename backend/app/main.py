"""Stepflow Workflow Engine - FastAPI Application."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from api.v1.router import api_v1_router
from api.routes import health
from api.routes.ws import router as ws_router
from api.websockets.connection_manager import manager
from core.exceptions import EngineException
from core.logging_config import setup_logging
from db.database import close_db, init_db
from workflow.events import RedisEventRelay

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    settings = get_settings()
    setup_logging()

    # Validate secrets are not using defaults in production
    try:
        settings.validate_secrets()
    except RuntimeError as e:
        logger.critical("Startup aborted", error=str(e))
        raise

    await init_db()

    # Forward worker events published on Redis to WebSocket subscribers
    relay = RedisEventRelay(settings.REDIS_URL, manager, prefix=settings.EVENT_CHANNEL_PREFIX)
    relay.start()

    logger.info(
        "Application started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    yield
    # Shutdown
    await relay.stop()
    await close_db()
    logger.info("Application shutting down")


async def engine_exception_handler(request: Request, exc: EngineException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Versioned workflow definitions executed step by step by a queue-backed engine.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan if use_lifespan else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Domain errors carry their own HTTP status
    app.add_exception_handler(EngineException, engine_exception_handler)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API, all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    # WebSocket endpoint (mounted directly on the app)
    app.include_router(ws_router)

    return app


app = create_app()
